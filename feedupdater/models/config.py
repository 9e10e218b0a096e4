"""
Pydantic model for updater configuration.
Provides robust validation for all settings.
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_REPLACEMENT_PATTERNS = ["*.dll", "*.exe", "*.so", "*.so.*", "*.dylib", "*.pyd"]


class UpdaterConfig(BaseModel):
    """A validated configuration model for the updater."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Feed
    feed_url: str = ""
    core_package: str = "core"

    # Download behaviour
    download_attempts: int = 3
    retry_base_delay: float = 1.5
    max_workers: int = 4

    # Installation behaviour
    replacement_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_REPLACEMENT_PATTERNS)
    )
    max_verify_passes: int = 10

    # Internal fields not loaded from INI file
    install_root: Path = Field(..., repr=False)

    @field_validator("feed_url")
    @classmethod
    def normalize_feed_url(cls, v: str) -> str:
        """Ensures a configured feed URL is http(s) and ends with a slash."""
        if not v:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Feed URL must start with http:// or https://, got: {v}")
        return v if v.endswith("/") else v + "/"

    @field_validator("core_package")
    @classmethod
    def validate_core_package(cls, v: str) -> str:
        if not v:
            raise ValueError("Core package name cannot be empty.")
        return v

    @field_validator("download_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        """Ensures a reasonable number of download attempts."""
        if v < 1 or v > 10:
            raise ValueError("Download attempts must be between 1 and 10.")
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 1 or v > 32:
            raise ValueError("Max workers must be between 1 and 32.")
        return v

    @field_validator("max_verify_passes")
    @classmethod
    def validate_passes(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Max verify passes must be at least 1.")
        return v

    @property
    def bin_dir(self) -> Path:
        return self.install_root / "bin"

    @property
    def installed_packages_dir(self) -> Path:
        return self.bin_dir / "installed-packages"

    @property
    def package_cache_dir(self) -> Path:
        return self.install_root / "data" / "dl-cache"

    @property
    def bootstrap_manifest_path(self) -> Path:
        return self.installed_packages_dir / f"{self.core_package}.manifest"

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"install_root"}
        return {key for key in cls.model_fields if key not in internal_fields}
