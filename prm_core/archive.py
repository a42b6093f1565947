"""tar.gz codec for package archives.

Archives are written deterministically: entries in sorted relative path order,
normalized tar headers and a gzip header without timestamp or file name, so
two identical file sets always produce byte-identical archives. Reading is
forward-only (``r|gz``), which is why installation reads an archive twice.
"""

from __future__ import annotations

import gzip
import logging
import os
import shutil
import tarfile
import tempfile
from pathlib import Path
from typing import Callable, Iterable, IO

from .errors import RepositoryIOError
from .fsutil import safe_output_path, scan_files
from .package import DOCS_FILENAME, MANIFEST_FILENAME, Package, read_package

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tar.gz"
COMPRESS_LEVEL = 9
_COPY_BUFFER = 256 * 1024


def _entry_name(raw: str) -> str:
    name = raw.replace("\\", "/")
    while name.startswith("./"):
        name = name[2:]
    return name.strip("/")


def _tar_info(name: str, size: int) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.size = size
    info.mtime = 0
    info.mode = 0o644
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info


def archive_files(source_dir: Path, exclude: Iterable[str] = (DOCS_FILENAME,)) -> list[tuple[str, Path]]:
    excluded = set(exclude)
    return [(rel, path) for rel, path in scan_files(source_dir) if rel not in excluded]


def write_archive(
    source_dir: Path,
    out_path: Path,
    *,
    exclude: Iterable[str] = (DOCS_FILENAME,),
    compress_level: int = COMPRESS_LEVEL,
) -> Path:
    """Pack every file of ``source_dir`` (except ``exclude``) into ``out_path``."""
    files = archive_files(source_dir, exclude)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{out_path.name}.", suffix=".tmp", dir=out_path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as raw:
            with gzip.GzipFile(filename="", mode="wb", fileobj=raw, compresslevel=compress_level, mtime=0) as gz:
                with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
                    for rel, path in files:
                        with path.open("rb") as handle:
                            tar.addfile(_tar_info(rel, path.stat().st_size), handle)
        os.replace(tmp_path, out_path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise RepositoryIOError(f"failed to write archive {out_path}: {exc}") from exc
    return out_path


def read_entry(archive_path: Path, name: str, callback: Callable[[tarfile.TarInfo, IO[bytes]], object]) -> bool:
    """Scan forward to the file entry ``name`` and hand its stream to ``callback``.

    Returns False when the archive has no such entry.
    """
    wanted = _entry_name(name)
    try:
        with tarfile.open(archive_path, mode="r|gz") as tar:
            for member in tar:
                if member.isfile() and _entry_name(member.name) == wanted:
                    stream = tar.extractfile(member)
                    if stream is None:
                        return False
                    callback(member, stream)
                    return True
    except (tarfile.TarError, EOFError, OSError) as exc:
        raise RepositoryIOError(f"failed to read archive {archive_path}: {exc}") from exc
    return False


def read_all(archive_path: Path, callback: Callable[[tarfile.TarInfo, IO[bytes] | None], object]) -> None:
    """Iterate every entry; directory entries yield no stream."""
    try:
        with tarfile.open(archive_path, mode="r|gz") as tar:
            for member in tar:
                stream = tar.extractfile(member) if member.isfile() else None
                callback(member, stream)
    except (tarfile.TarError, EOFError) as exc:
        raise RepositoryIOError(f"failed to read archive {archive_path}: {exc}") from exc


def read_manifest(archive_path: Path) -> Package | None:
    """First pass of an install: parse the manifest without extracting anything."""
    found: list[Package] = []

    def _parse(member: tarfile.TarInfo, stream: IO[bytes]) -> None:
        del member
        try:
            found.append(read_package(stream))
        except ValueError as exc:
            raise RepositoryIOError(f"invalid manifest in {archive_path}: {exc}") from exc

    read_entry(archive_path, MANIFEST_FILENAME, _parse)
    return found[0] if found else None


def extract_archive(archive_path: Path, dest: Path) -> None:
    """Second pass of an install: materialize every entry below ``dest``."""
    dest.mkdir(parents=True, exist_ok=True)

    def _write(member: tarfile.TarInfo, stream: IO[bytes] | None) -> None:
        name = _entry_name(member.name)
        if not name:
            return
        target = safe_output_path(dest, name)
        if member.isdir():
            target.mkdir(parents=True, exist_ok=True)
            return
        if stream is None:
            logger.warning("skip unsupported archive entry %s (type=%r)", member.name, member.type)
            return
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("wb") as out:
            shutil.copyfileobj(stream, out, _COPY_BUFFER)

    try:
        read_all(archive_path, _write)
    except OSError as exc:
        raise RepositoryIOError(f"failed to extract archive {archive_path}: {exc}") from exc
