"""Package manifest model (``package.yml``)."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Mapping

import yaml

from .errors import ManifestMissingError

MANIFEST_FILENAME = "package.yml"
DOCS_FILENAME = "README.md"
UNVERSIONED = "last"


@dataclass(frozen=True)
class Package:
    """One package at one version.

    ``info`` carries the published archive description (``size``, ``sha256``
    and, for downloaded packages, ``repo``); it describes the published archive
    and not necessarily the local working tree.
    """

    name: str
    version: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    info: Mapping[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.name}@{self.version}"

    @property
    def size(self) -> int | None:
        value = self.info.get("size")
        return int(value) if value is not None else None

    @property
    def sha256(self) -> str | None:
        value = self.info.get("sha256")
        return str(value) if value else None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.name}
        if self.version != UNVERSIONED:
            payload["version"] = self.version
        payload.update({k: v for k, v in self.metadata.items() if k not in ("name", "version")})
        return payload

    def dumps(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, allow_unicode=True)

    def write(self, directory: Path) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / MANIFEST_FILENAME
        path.write_text(self.dumps(), encoding="utf-8")
        return path


def parse_manifest(payload: Any, info: Mapping[str, Any] | None = None) -> Package:
    if not isinstance(payload, Mapping):
        raise ValueError("package manifest must be a mapping")
    name = str(payload.get("name") or "").strip()
    if not name:
        raise ValueError("package manifest is missing 'name'")
    version = str(payload.get("version") or "").strip() or UNVERSIONED
    metadata = {str(k): v for k, v in payload.items() if k not in ("name", "version")}
    return Package(name=name, version=version, metadata=metadata, info=dict(info or {}))


def read_package(source: Path | str | IO[bytes] | IO[str], info: Mapping[str, Any] | None = None) -> Package:
    """Read a manifest from a path or an open stream."""
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.is_file():
            raise ManifestMissingError(f"package manifest not found: {path}")
        text = path.read_text(encoding="utf-8")
    else:
        raw = source.read()
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
    try:
        payload = yaml.safe_load(io.StringIO(text))
    except yaml.YAMLError as exc:
        raise ValueError(f"invalid package manifest: {exc}") from exc
    return parse_manifest(payload, info)
