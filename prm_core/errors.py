"""Error taxonomy for the package repository engine."""

from __future__ import annotations


class PrmError(Exception):
    """Base error for repository operations."""


class MalformedVersionError(PrmError, ValueError):
    """Raised when a version string is not a valid semantic version."""


class CacheCorruptError(PrmError):
    """Raised when the persisted version cache cannot be read."""


class ExternalFetchError(PrmError):
    """Raised when an external repository listing cannot be fetched or parsed."""


class DownloadError(ExternalFetchError):
    """Raised when a package archive cannot be downloaded."""


class ManifestMissingError(PrmError):
    """Raised when a directory or archive has no package manifest."""


class DirectoryCreateError(PrmError):
    """Raised when a publish directory cannot be created."""


class RepositoryIOError(PrmError):
    """Raised on read/write/copy failures inside the repository tree."""
