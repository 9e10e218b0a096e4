"""
Manages loading, validation, and migration of the INI configuration file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from feedupdater.exceptions import ConfigurationError
from feedupdater.models.config import UpdaterConfig

log = logging.getLogger(__name__)

CONFIG_FILE_NAME = "updater.ini"


class ConfigManager:
    """Handles all operations related to the updater's INI config file."""

    def __init__(self, install_root: Path, config_file_path: Path | None = None):
        self.install_root = install_root
        self.config_file_path = config_file_path or (
            install_root / "bin" / CONFIG_FILE_NAME
        )
        self._parser = configparser.ConfigParser()

    def load_config(self, cli_options: dict[str, Any] | None = None) -> UpdaterConfig:
        """
        Loads configuration from the INI file, applies CLI overrides, and validates it.

        A missing configuration file is not an error: the defaults leave the
        feed URL empty, which keeps the updater disabled.

        Raises:
            ConfigurationError: If the config file is invalid or validation fails.
        """
        config_from_file: dict[str, Any] = {}
        if self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(
                    f"Error parsing configuration file: {e}"
                ) from e

            if self._migrate_if_needed():
                log.info(
                    "[yellow]Configuration file was updated with new default values."
                    "[/yellow]"
                )
            config_from_file = self._get_config_as_dict()
        else:
            log.debug(
                f"No configuration file at '{self.config_file_path}', updater feed disabled."
            )

        if cli_options:
            config_from_file.update(cli_options)

        try:
            return UpdaterConfig(**config_from_file, install_root=self.install_root)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """Creates and saves a new configuration file from `settings` plus defaults."""
        config = configparser.ConfigParser()
        config["DEFAULT"] = {}
        defaults = UpdaterConfig.model_construct(install_root=self.install_root)

        for key in sorted(UpdaterConfig.get_ini_keys()):
            value = settings.get(key, getattr(defaults, key, None))
            config["DEFAULT"][key] = self._to_ini_value(value)

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    @staticmethod
    def _to_ini_value(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, list):
            return ",".join(map(str, value))
        return "" if value is None else str(value)

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a dictionary."""
        section = self._parser["DEFAULT"]
        return {
            "feed_url": section.get("feed_url", ""),
            "core_package": section.get("core_package", "core"),
            "download_attempts": section.getint("download_attempts", 3),
            "retry_base_delay": section.getfloat("retry_base_delay", 1.5),
            "max_workers": section.getint("max_workers", 4),
            "replacement_patterns": [
                p.strip()
                for p in section.get("replacement_patterns", "").split(",")
                if p.strip()
            ],
            "max_verify_passes": section.getint("max_verify_passes", 10),
        }

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = UpdaterConfig.model_construct(install_root=self.install_root)
        config_section = self._parser["DEFAULT"]
        needs_saving = False

        for key in sorted(UpdaterConfig.get_ini_keys()):
            if key not in config_section:
                config_section[key] = self._to_ini_value(getattr(defaults, key))
                needs_saving = True
                log.debug(
                    f"Migrating config: added missing key '{key}' with "
                    f"value '{config_section[key]}'."
                )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving
