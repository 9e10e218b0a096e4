"""
Package manifest model with streaming XML parsing and deterministic serialization.

A manifest describes one installable package: its identity, the interface
version of the feed it belongs to, declared dependencies, the files it installs
(with per-file SHA-256 digests) and install-time metadata such as default
configuration fragments and assemblies to preload.
"""

import copy
import io
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Dict, List, Optional, Tuple, Union

from feedupdater.exceptions import ManifestInvalid

log = logging.getLogger(__name__)

ROOT_TAG = "package"
HASH_SIZE = 32


def to_hex(data: bytes) -> str:
    """Canonical hash encoding: uppercase hex without separators."""
    return data.hex().upper()


def from_hex(value: str, what: str = "hash") -> bytes:
    value = value.strip()
    try:
        data = bytes.fromhex(value)
    except ValueError as e:
        raise ManifestInvalid(f"Invalid hex value for {what}: '{value}'") from e
    if len(data) != HASH_SIZE:
        raise ManifestInvalid(
            f"Invalid {what}: expected {HASH_SIZE} bytes, got {len(data)}."
        )
    return data


def _parse_bool(value: str, what: str) -> bool:
    normalized = value.strip().lower()
    if normalized in ("true", "1"):
        return True
    if normalized in ("false", "0"):
        return False
    raise ManifestInvalid(f"Invalid boolean for {what}: '{value}'")


def normalize_path(path: str) -> PurePosixPath:
    """Manifest and archive paths may use either separator; `/` is canonical."""
    return PurePosixPath(path.replace("\\", "/"))


def _check_relative_path(path: str) -> None:
    """Rejects file entries that would land outside the installation root."""
    posix = normalize_path(path)
    if not path or posix.is_absolute() or ".." in posix.parts or ":" in posix.parts[0]:
        raise ManifestInvalid(f"File path '{path}' is not relative to the install root.")


@dataclass(frozen=True)
class FileRecord:
    """One installed file: its digest, optional version and version-source flag."""

    hash: Optional[bytes] = None
    version: str = ""
    is_version_source: bool = False


@dataclass(frozen=True)
class ConfigurationSource:
    """A default configuration fragment, optionally restricted to start modes."""

    source: str
    start_modes: Tuple[str, ...] = ()

    def applies_to(self, mode: str) -> bool:
        return not self.start_modes or mode in self.start_modes


@dataclass(frozen=True)
class PreloadAssembly:
    """An assembly the host loads before starting, optionally per start mode."""

    filename: str
    start_modes: Tuple[str, ...] = ()

    def applies_to(self, mode: str) -> bool:
        return not self.start_modes or mode in self.start_modes


@dataclass
class PackageManifest:
    """
    Description of one package as published on the feed and recorded locally.

    Instances are treated as immutable once loaded; the registry hands out
    copies made with `clone()`.
    """

    name: str
    version: str
    interface_version: str
    license: str = ""
    description: str = ""
    content_hash: Optional[bytes] = None
    skip_delivery: bool = False
    requires_replacement: bool = False
    dependencies: Dict[str, str] = field(default_factory=dict)
    files: Dict[str, FileRecord] = field(default_factory=dict)
    default_configurations: List[ConfigurationSource] = field(default_factory=list)
    preload_assemblies: List[PreloadAssembly] = field(default_factory=list)

    @property
    def archive_name(self) -> str:
        """Feed-relative path of the package archive."""
        return f"{self.interface_version}/{self.version}/{self.name}.zip"

    def clone(self) -> "PackageManifest":
        """Returns a fully independent copy (no shared dicts or lists)."""
        return copy.deepcopy(self)

    # Parsing

    @classmethod
    def parse(cls, stream: BinaryIO) -> "PackageManifest":
        """
        Parses a manifest from a binary stream.

        The document is consumed incrementally; each top-level child of
        <package> is applied and discarded as soon as its end tag is read.

        Raises:
            ManifestInvalid: If the root is not <package>, a required field is
            missing or empty, a value is malformed, or the input is truncated.
        """
        builder = _ManifestBuilder()
        depth = 0
        root: Optional[ET.Element] = None
        try:
            for event, elem in ET.iterparse(stream, events=("start", "end")):
                if event == "start":
                    if root is None:
                        if elem.tag != ROOT_TAG:
                            raise ManifestInvalid(
                                f"Unexpected root element <{elem.tag}>, "
                                f"expected <{ROOT_TAG}>."
                            )
                        root = elem
                    depth += 1
                    continue

                depth -= 1
                if depth == 1:
                    builder.apply(elem)
                    root.remove(elem)
        except ET.ParseError as e:
            raise ManifestInvalid(f"Malformed or truncated manifest: {e}") from e

        if root is None:
            raise ManifestInvalid("Manifest document is empty.")
        return builder.build()

    @classmethod
    def from_bytes(cls, data: bytes) -> "PackageManifest":
        return cls.parse(io.BytesIO(data))

    @classmethod
    def load(cls, path: Union[str, Path]) -> "PackageManifest":
        with open(path, "rb") as f:
            return cls.parse(f)

    # Serialization

    def to_element(self) -> ET.Element:
        root = ET.Element(ROOT_TAG)
        ET.SubElement(root, "name").text = self.name
        ET.SubElement(root, "version").text = self.version
        ET.SubElement(root, "interface-version").text = self.interface_version

        if self.license:
            ET.SubElement(root, "license").text = self.license
        if self.description:
            ET.SubElement(root, "description").text = self.description
        if self.skip_delivery:
            ET.SubElement(root, "skip-delivery").text = "true"
        if self.requires_replacement:
            ET.SubElement(root, "requires-replacement").text = "true"
        if self.content_hash is not None:
            ET.SubElement(root, "sha256").text = to_hex(self.content_hash)

        for cfg in self.default_configurations:
            cfg_elem = ET.SubElement(root, "default-configuration")
            ET.SubElement(cfg_elem, "source").text = cfg.source
            for mode in cfg.start_modes:
                ET.SubElement(cfg_elem, "use-if-started-as").text = mode

        for preload in self.preload_assemblies:
            preload_elem = ET.SubElement(root, "preload-assembly")
            ET.SubElement(preload_elem, "assembly").text = preload.filename
            for mode in preload.start_modes:
                ET.SubElement(preload_elem, "use-if-started-as").text = mode

        if self.dependencies:
            deps_elem = ET.SubElement(root, "dependencies")
            for dep_name, dep_version in self.dependencies.items():
                dep_elem = ET.SubElement(deps_elem, "dependency", name=dep_name)
                if dep_version:
                    dep_elem.set("version", dep_version)

        if self.files:
            files_elem = ET.SubElement(root, "files")
            for file_name, record in self.files.items():
                file_elem = ET.SubElement(files_elem, "file", name=file_name)
                if record.version:
                    file_elem.set("version", record.version)
                if record.hash is not None:
                    file_elem.set("sha256", to_hex(record.hash))
                if record.is_version_source:
                    file_elem.set("is-version-src", "true")

        return root

    def to_bytes(self) -> bytes:
        root = self.to_element()
        ET.indent(root)
        return ET.tostring(root, encoding="utf-8", xml_declaration=True)

    def serialize(self, path: Union[str, Path]) -> None:
        """Writes the manifest to `path`, replacing any existing file."""
        with open(path, "wb") as f:
            f.write(self.to_bytes())


class _ManifestBuilder:
    """Accumulates top-level <package> children into a PackageManifest."""

    def __init__(self) -> None:
        self.fields: Dict[str, object] = {}
        self.dependencies: Dict[str, str] = {}
        self.files: Dict[str, FileRecord] = {}
        self.configurations: List[ConfigurationSource] = []
        self.preloads: List[PreloadAssembly] = []

    @staticmethod
    def _required_text(elem: ET.Element) -> str:
        text = (elem.text or "").strip()
        if not text:
            raise ManifestInvalid(f"Element <{elem.tag}> must not be empty.")
        return text

    def apply(self, elem: ET.Element) -> None:
        tag = elem.tag
        if tag in ("name", "version", "interface-version"):
            self.fields[tag] = self._required_text(elem)
        elif tag in ("license", "description"):
            self.fields[tag] = (elem.text or "").strip()
        elif tag in ("skip-delivery", "requires-replacement"):
            self.fields[tag] = _parse_bool(self._required_text(elem), tag)
        elif tag == "sha256":
            self.fields[tag] = from_hex(self._required_text(elem), "package sha256")
        elif tag == "default-configuration":
            source, modes = self._read_moded_entry(elem, "source")
            self.configurations.append(ConfigurationSource(source, modes))
        elif tag == "preload-assembly":
            filename, modes = self._read_moded_entry(elem, "assembly")
            self.preloads.append(PreloadAssembly(filename, modes))
        elif tag == "dependencies":
            for dep in elem.iter("dependency"):
                self._add_dependency(dep)
        elif tag == "files":
            for file_elem in elem.iter("file"):
                self._add_file(file_elem)
        else:
            log.debug(f"Skipping unknown manifest element <{tag}>")

    def _read_moded_entry(self, elem: ET.Element, value_tag: str) -> Tuple[str, Tuple[str, ...]]:
        value = ""
        modes: List[str] = []
        for child in elem:
            if child.tag == value_tag:
                value = self._required_text(child)
            elif child.tag == "use-if-started-as":
                modes.append(self._required_text(child))
        if not value:
            raise ManifestInvalid(f"<{elem.tag}> requires a <{value_tag}> element.")
        return value, tuple(modes)

    def _add_dependency(self, elem: ET.Element) -> None:
        dep_name = elem.get("name", "").strip()
        if not dep_name:
            raise ManifestInvalid("<dependency> requires a name attribute.")
        if dep_name in self.dependencies:
            raise ManifestInvalid(f"Dependency '{dep_name}' is declared twice.")
        self.dependencies[dep_name] = elem.get("version", "").strip()

    def _add_file(self, elem: ET.Element) -> None:
        file_name = elem.get("name", "").strip()
        _check_relative_path(file_name)
        if file_name in self.files:
            raise ManifestInvalid(f"File '{file_name}' is declared twice.")
        hex_hash = elem.get("sha256")
        self.files[file_name] = FileRecord(
            hash=from_hex(hex_hash, f"sha256 of '{file_name}'") if hex_hash else None,
            version=elem.get("version", ""),
            is_version_source=_parse_bool(elem.get("is-version-src", "false"), "is-version-src"),
        )

    def build(self) -> PackageManifest:
        for required in ("name", "version", "interface-version"):
            if required not in self.fields:
                raise ManifestInvalid(f"Manifest is missing required element <{required}>.")

        name = self.fields["name"]
        if name in self.dependencies:
            raise ManifestInvalid(f"Package '{name}' declares a dependency on itself.")

        return PackageManifest(
            name=name,
            version=self.fields["version"],
            interface_version=self.fields["interface-version"],
            license=self.fields.get("license", ""),
            description=self.fields.get("description", ""),
            content_hash=self.fields.get("sha256"),
            skip_delivery=self.fields.get("skip-delivery", False),
            requires_replacement=self.fields.get("requires-replacement", False),
            dependencies=self.dependencies,
            files=self.files,
            default_configurations=self.configurations,
            preload_assemblies=self.preloads,
        )
