from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Union


@dataclass(frozen=True)
class LocalOrigin:
    """The version is served from the local package tree."""

    def __str__(self) -> str:
        return "local"


@dataclass(frozen=True)
class RemoteOrigin:
    """The version must be fetched from the external repository ``source``."""

    source: str

    def __str__(self) -> str:
        return self.source


Origin = Union[LocalOrigin, RemoteOrigin]
LOCAL = LocalOrigin()


@dataclass(frozen=True)
class RemoteListing:
    source: str
    versions: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)


@dataclass
class CacheEntry:
    versions: dict[str, Any]
    time: int

    def to_dict(self) -> dict[str, Any]:
        return {"versions": self.versions, "time": self.time}


@dataclass(frozen=True)
class HttpSourceConfig:
    timeout_seconds: float = 30.0
    max_retries: int = 2
    backoff_seconds: float = 0.2
    token: str | None = None


def _fingerprint(info: Mapping[str, Any]) -> tuple[int | None, str | None]:
    size = info.get("size")
    try:
        size = int(size) if size is not None else None
    except (TypeError, ValueError):
        size = None
    sha256 = info.get("sha256")
    return size, (str(sha256).lower() if sha256 else None)


def info_differs(remote: Mapping[str, Any] | None, local: Mapping[str, Any] | None) -> bool:
    """True when both descriptions exist and disagree on size or hash."""
    if not remote or not local:
        return False
    return _fingerprint(remote) != _fingerprint(local)


def merge_origins(
    local_versions: Iterable[str],
    listings: Iterable[RemoteListing],
    local_info: Mapping[str, Mapping[str, Any] | None] | None = None,
) -> dict[str, Origin]:
    """Merge local and remote versions into one origin per version.

    Listings are applied in order. A remote version unknown so far is taken
    from that source; a version already known is switched to the source only
    when its published description differs from the local ``<version>.json``.
    """
    local_info = local_info or {}
    origins: dict[str, Origin] = {version: LOCAL for version in local_versions}
    for listing in listings:
        for version, info in listing.versions.items():
            if version not in origins:
                origins[version] = RemoteOrigin(listing.source)
            elif info_differs(info, local_info.get(version)):
                origins[version] = RemoteOrigin(listing.source)
    return origins
