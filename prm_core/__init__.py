"""Package repository engine: resolve, cache, install and publish packages."""

from .errors import (
    CacheCorruptError,
    DirectoryCreateError,
    DownloadError,
    ExternalFetchError,
    MalformedVersionError,
    ManifestMissingError,
    PrmError,
    RepositoryIOError,
)
from .index import IndexReport
from .lock import PackageLock, read_lock, write_lock
from .package import DOCS_FILENAME, MANIFEST_FILENAME, Package, read_package
from .repository import Repository
from .semver import SemanticVersion

__all__ = [
    "CacheCorruptError",
    "DOCS_FILENAME",
    "DirectoryCreateError",
    "DownloadError",
    "ExternalFetchError",
    "IndexReport",
    "MANIFEST_FILENAME",
    "MalformedVersionError",
    "ManifestMissingError",
    "Package",
    "PackageLock",
    "PrmError",
    "Repository",
    "RepositoryIOError",
    "SemanticVersion",
    "read_lock",
    "read_package",
    "write_lock",
]
