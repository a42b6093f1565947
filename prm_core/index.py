"""Re-indexing of the local package tree into a publishable index.

Output layout below the destination directory::

    modules.json                 list of module names
    .gitignore                   ignores the per-version directories
    <module>/versions.json       {version: {size, sha256}}
    <module>/<version>.tar.gz    archive of the version (README.md excluded)
    <module>/<version>.md        the version's README.md, when present
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from .archive import ARCHIVE_SUFFIX, archive_files, write_archive
from .errors import DirectoryCreateError
from .fsutil import file_sha256_hex, list_dirs, read_json, remove_path, write_json
from .package import DOCS_FILENAME

logger = logging.getLogger(__name__)

INDEX_FILENAME = "versions.json"
MODULES_FILENAME = "modules.json"
IGNORE_FILENAME = ".gitignore"
IGNORE_CONTENT = "/*/*/"


@dataclass(frozen=True)
class VersionDigest:
    size: int
    sha256: str

    def to_dict(self) -> dict[str, Any]:
        return {"size": self.size, "sha256": self.sha256}

    def matches(self, entry: Any) -> bool:
        if not isinstance(entry, dict):
            return False
        return entry.get("size") == self.size and entry.get("sha256") == self.sha256


@dataclass
class IndexReport:
    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    modules: list[str] = field(default_factory=list)

    @property
    def rebuilt(self) -> list[str]:
        return [*self.added, *self.updated]


def version_digest(version_dir: Path, *, max_workers: int = 4) -> VersionDigest:
    """Size and content hash of a version tree.

    The content hash is the sha256 of the concatenated hex sha256 of every
    file, visited in sorted relative path order, README.md excluded.
    """
    files = [path for _, path in archive_files(version_dir)]
    with ThreadPoolExecutor(max_workers=max(max_workers, 1)) as pool:
        digests = list(pool.map(file_sha256_hex, files))
    size = sum(path.stat().st_size for path in files)
    return VersionDigest(size=size, sha256=hashlib.sha256("".join(digests).encode("ascii")).hexdigest())


def load_index(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        payload = read_json(path)
    except (OSError, ValueError) as exc:
        logger.warning("ignoring unreadable index %s: %s", path, exc)
        return {}
    return payload if isinstance(payload, dict) else {}


def _ensure_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise DirectoryCreateError(f"Failed to create directory: {path}") from exc


def index_module(root: Path, dest: Path, module: str, report: IndexReport, *, max_workers: int = 4) -> dict[str, Any]:
    logger.info("Update Index of module (%s)", module)
    module_dest = dest / module
    index_path = module_dest / INDEX_FILENAME
    index = load_index(index_path)

    for version_dir in list_dirs(root / module):
        version = version_dir.name
        key = f"{module}@{version}"

        docs = version_dir / DOCS_FILENAME
        if docs.is_file():
            _ensure_dir(module_dest)
            shutil.copyfile(docs, module_dest / f"{version}.md")

        digest = version_digest(version_dir, max_workers=max_workers)
        archive_path = module_dest / f"{version}{ARCHIVE_SUFFIX}"
        previous = index.get(version)
        if digest.matches(previous) and archive_path.is_file():
            logger.info(" -> Skip version: %s, size = %s, hash = %s", version, digest.size, digest.sha256)
            report.skipped.append(key)
            continue

        if previous:
            logger.info(" -> Update version: %s, size = %s, hash = %s", version, digest.size, digest.sha256)
            report.updated.append(key)
        else:
            logger.info(" -> Add version: %s, size = %s, hash = %s", version, digest.size, digest.sha256)
            report.added.append(key)

        remove_path(archive_path)
        _ensure_dir(archive_path.parent)
        write_archive(version_dir, archive_path)
        index[version] = digest.to_dict()

    _ensure_dir(module_dest)
    write_json(index_path, index)
    return index


def index_all(
    root: Path,
    dest: Path | None = None,
    only_modules: Iterable[str] = (),
    *,
    max_workers: int = 4,
) -> IndexReport:
    dest = dest or root
    _ensure_dir(dest)
    wanted = set(only_modules)
    modules = [path.name for path in list_dirs(root)]
    report = IndexReport(modules=modules)

    for module in modules:
        if wanted and module not in wanted:
            continue
        index_module(root, dest, module, report, max_workers=max_workers)

    write_json(dest / MODULES_FILENAME, modules)
    (dest / IGNORE_FILENAME).write_text(IGNORE_CONTENT, encoding="utf-8")
    return report
