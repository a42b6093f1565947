"""Package lock: pins package names to previously resolved versions."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from .semver import matches

LOCK_FILENAME = "package-lock.yml"


@dataclass
class PackageLock:
    versions: dict[str, str] = field(default_factory=dict)

    def find_version(self, name: str) -> str | None:
        value = self.versions.get(name)
        return value or None

    def pin(self, name: str, version: str) -> None:
        self.versions[name] = version

    def unpin(self, name: str) -> None:
        self.versions.pop(name, None)

    def apply(self, name: str, pattern: str) -> str:
        """Return the pinned version when it is compatible with ``pattern``.

        An incompatible pin is ignored and ``pattern`` is returned unchanged.
        """
        pinned = self.find_version(name)
        if pinned and matches(pinned, pattern):
            return pinned
        return pattern

    def to_dict(self) -> dict[str, Any]:
        return {"dependencies": dict(sorted(self.versions.items()))}


def read_lock(path: Path) -> PackageLock:
    """Read a lock file (YAML or JSON); a missing or unreadable file is an empty lock."""
    if not path.exists():
        return PackageLock()
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError):
        return PackageLock()
    return PackageLock(versions=_normalize_lock(payload))


def write_lock(path: Path, lock: PackageLock) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(lock.to_dict(), sort_keys=False), encoding="utf-8")
    return path


def _normalize_lock(payload: Any) -> dict[str, str]:
    if not isinstance(payload, Mapping):
        return {}
    section = payload.get("dependencies")
    if not isinstance(section, Mapping):
        # flat {name: version} documents
        section = payload
    return {
        str(name): str(version).strip()
        for name, version in section.items()
        if isinstance(version, (str, int, float)) and str(version).strip()
    }
