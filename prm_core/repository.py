"""Local package repository: resolution, installation, archives and publishing."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Iterable

from . import semver
from .archive import ARCHIVE_SUFFIX, extract_archive, read_manifest, write_archive
from .config import RepositoryConfig, WorkspaceLayout, load_config
from .errors import RepositoryIOError
from .fsutil import list_dirs, read_json, staging_dir, write_json
from .index import IndexReport, index_all
from .lock import PackageLock
from .package import MANIFEST_FILENAME, Package, read_package
from .sources.cache import CACHE_FILENAME, DEFAULT_TTL_SECONDS, CacheStore, JsonCacheStore, VersionCache
from .sources.models import Origin, RemoteListing, RemoteOrigin, merge_origins
from .sources.repositories import ExternalRepository, build_source

logger = logging.getLogger(__name__)


def _segment(value: str, what: str) -> str:
    if not value or value.startswith(".") or "/" in value or "\\" in value:
        raise ValueError(f"invalid {what}: {value!r}")
    return value


class Repository:
    """A tree of installed packages, ``<root>/<name>/<version>/``.

    External repositories registered with :meth:`add_external_repo` are
    queried (through the version cache) during resolution, and the tree can be
    re-indexed into the same layout those repositories serve.
    """

    def __init__(
        self,
        directory: Path,
        *,
        sources: Iterable[ExternalRepository] = (),
        cache_store: CacheStore | None = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_workers: int = 4,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.dir = directory.resolve()
        self.dir.mkdir(parents=True, exist_ok=True)
        store = cache_store or JsonCacheStore(self.dir / CACHE_FILENAME)
        cache_kwargs: dict[str, Any] = {"ttl_seconds": ttl_seconds}
        if clock is not None:
            cache_kwargs["clock"] = clock
        self.cache = VersionCache(store, **cache_kwargs)
        self.max_workers = max(int(max_workers), 1)
        self._externals: dict[str, ExternalRepository] = {}
        for source in sources:
            self.add_external_repo(source)

    @classmethod
    def from_workspace(cls, layout: WorkspaceLayout, config: RepositoryConfig | None = None) -> Repository:
        config = config or load_config(layout)
        sources: list[ExternalRepository] = []
        for spec in config.sources:
            try:
                sources.append(build_source(spec))
            except ValueError as exc:
                logger.warning("skipping source %r: %s", spec.get("url"), exc)
        return cls(
            layout.packages_dir,
            sources=sources,
            ttl_seconds=config.ttl_seconds,
            max_workers=config.max_workers,
        )

    # ------------------------------------------------------------------
    # layout
    # ------------------------------------------------------------------
    def version_dir(self, name: str, version: str) -> Path:
        return self.dir / _segment(name, "package name") / _segment(version, "version")

    def archive_path(self, name: str, version: str) -> Path:
        return self.dir / _segment(name, "package name") / f"{_segment(version, 'version')}{ARCHIVE_SUFFIX}"

    def info_path(self, name: str, version: str) -> Path:
        return self.dir / _segment(name, "package name") / f"{_segment(version, 'version')}.json"

    # ------------------------------------------------------------------
    # sources
    # ------------------------------------------------------------------
    @property
    def externals(self) -> list[ExternalRepository]:
        return list(self._externals.values())

    def add_external_repo(self, repository: ExternalRepository) -> None:
        self._externals[repository.source] = repository

    def _fetch_listings(self, name: str) -> list[RemoteListing]:
        externals = self.externals
        if not externals:
            return []
        workers = min(self.max_workers, len(externals))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self.cache.get_versions, external, name) for external in externals]
            return [RemoteListing(external.source, future.result()) for external, future in zip(externals, futures)]

    # ------------------------------------------------------------------
    # resolution
    # ------------------------------------------------------------------
    def local_versions(self, name: str) -> list[str]:
        return [path.name for path in list_dirs(self.dir / _segment(name, "package name"))]

    def get_version_info(self, name: str, version: str) -> dict[str, Any] | None:
        """Published metadata of an installed version (``<version>.json``)."""
        path = self.info_path(name, version)
        if not path.is_file():
            return None
        try:
            payload = read_json(path)
        except (OSError, ValueError) as exc:
            logger.warning("ignoring unreadable version info %s: %s", path, exc)
            return None
        return payload if isinstance(payload, dict) else None

    def get_package_versions(self, name: str, only_local: bool = True) -> dict[str, Origin]:
        local = self.local_versions(name)
        if only_local:
            return merge_origins(local, [])
        listings = self._fetch_listings(name)
        local_info = {version: self.get_version_info(name, version) for version in local}
        return merge_origins(local, listings, local_info)

    def find_package(self, name: str, version_pattern: str = "*", lock: PackageLock | None = None) -> Package | None:
        if lock is not None:
            pinned = lock.apply(name, version_pattern)
            if pinned != version_pattern:
                logger.info("-> %s pinned to %s by lock (requested %s)", name, pinned, version_pattern)
            version_pattern = pinned

        candidates: dict[str, Origin] = {}
        for version, origin in self.get_package_versions(name, only_local=False).items():
            if not semver.is_valid(version):
                logger.debug("skip non-semantic version %s@%s", name, version)
                continue
            if semver.matches(version, version_pattern):
                candidates[version] = origin

        if not candidates:
            return None

        found = max(candidates, key=semver.parse)
        origin = candidates[found]
        if isinstance(origin, RemoteOrigin):
            external = self._externals.get(origin.source)
            if external is None or not self._download(external, name, found):
                return None
        return self.get_package(name, found)

    def _download(self, external: ExternalRepository, name: str, version: str) -> bool:
        info = self.cache.get_version_info(external, name, version) or {"repo": external.source}
        logger.info("-> download package %s@%s from '%s'", name, version, external.source)

        module_dir = self.dir / _segment(name, "package name")
        module_dir.mkdir(parents=True, exist_ok=True)
        # published archives at <version>.tar.gz are never touched by a download
        fd, tmp_name = tempfile.mkstemp(prefix=f".{_segment(version, 'version')}.", suffix=".download", dir=module_dir)
        os.close(fd)
        archive = Path(tmp_name)
        try:
            if not external.download_to(name, version, archive):
                return False
            if self._install_archive(archive, expected=(name, version)) is None:
                return False
            published = self.archive_path(name, version)
            if published.is_file():
                # keep an existing published archive in step with the reinstalled tree
                os.replace(archive, published)
        except (RepositoryIOError, OSError) as exc:
            logger.error("failed to install %s@%s from '%s': %s", name, version, external.source, exc)
            return False
        finally:
            archive.unlink(missing_ok=True)

        write_json(self.info_path(name, version), info)
        return True

    def get_package(self, name: str, version: str) -> Package | None:
        manifest = self.version_dir(name, version) / MANIFEST_FILENAME
        if not manifest.is_file():
            return None
        return read_package(manifest, self.get_version_info(name, version) or {})

    # ------------------------------------------------------------------
    # installation
    # ------------------------------------------------------------------
    def install_from_dir(self, directory: Path) -> Package:
        """Install a package directory, replacing any install of the same version."""
        directory = directory.resolve()
        package = read_package(directory / MANIFEST_FILENAME)
        target = self.version_dir(package.name, package.version)
        if directory == target:
            return package
        try:
            with staging_dir(target) as stage:
                shutil.copytree(directory, stage, dirs_exist_ok=True)
        except OSError as exc:
            raise RepositoryIOError(f"failed to install {package.key} from {directory}: {exc}") from exc
        logger.info("installed %s into %s", package.key, target)
        return package

    def install_from_archive(self, archive: Path) -> bool:
        return self._install_archive(archive) is not None

    def _install_archive(self, archive: Path, expected: tuple[str, str] | None = None) -> Package | None:
        package = read_manifest(archive)
        if package is None:
            logger.error("archive %s has no %s, nothing installed", archive, MANIFEST_FILENAME)
            return None
        if expected is not None and (package.name, package.version) != expected:
            logger.error(
                "archive %s contains %s, expected %s@%s", archive, package.key, expected[0], expected[1]
            )
            return None

        target = self.version_dir(package.name, package.version)
        try:
            with staging_dir(target) as stage:
                extract_archive(archive, stage)
        except OSError as exc:
            raise RepositoryIOError(f"failed to install {package.key} from {archive}: {exc}") from exc
        logger.info("installed %s into %s", package.key, target)
        return package

    # ------------------------------------------------------------------
    # archives and vendoring
    # ------------------------------------------------------------------
    def archive_package(self, package: Package) -> Path | None:
        """Archive an installed version; an existing archive is returned as is."""
        source = self.version_dir(package.name, package.version)
        if not source.is_dir():
            return None
        archive = self.archive_path(package.name, package.version)
        if archive.is_file():
            return archive
        return write_archive(source, archive)

    def copy_to(self, package: Package, vendor_dir: Path) -> Path:
        source = self.version_dir(package.name, package.version)
        if not source.is_dir():
            raise RepositoryIOError(f"{package.key} is not installed")
        target = vendor_dir / package.name
        try:
            with staging_dir(target) as stage:
                shutil.copytree(source, stage, dirs_exist_ok=True)
        except OSError as exc:
            raise RepositoryIOError(f"failed to copy {package.key} to {vendor_dir}: {exc}") from exc
        return target

    # ------------------------------------------------------------------
    # publishing
    # ------------------------------------------------------------------
    def index_all(self, dest_dir: Path | None = None, only_modules: Iterable[str] = ()) -> IndexReport:
        return index_all(self.dir, dest_dir, only_modules, max_workers=self.max_workers)

    def index(self, module: str, dest_dir: Path | None = None) -> IndexReport:
        return self.index_all(dest_dir, [module])
