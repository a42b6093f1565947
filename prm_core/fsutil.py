"""Filesystem helpers shared by the repository, archive codec and indexer."""

from __future__ import annotations

import hashlib
import json
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from .errors import RepositoryIOError


def file_sha256_hex(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def is_hidden(path: Path) -> bool:
    return path.name.startswith(".")


def list_dirs(root: Path) -> list[Path]:
    """Direct, non-hidden subdirectories of ``root`` in name order."""
    if not root.is_dir():
        return []
    return sorted(item for item in root.iterdir() if item.is_dir() and not is_hidden(item))


def scan_files(root: Path) -> list[tuple[str, Path]]:
    """All files below ``root`` as ``(posix relative path, path)``, sorted by relative path."""
    root = root.resolve()
    files = [(path.relative_to(root).as_posix(), path) for path in root.rglob("*") if path.is_file()]
    return sorted(files, key=lambda item: item[0])


def safe_output_path(base_dir: Path, relative_path: str) -> Path:
    target = (base_dir / relative_path).resolve()
    root = base_dir.resolve()
    if target == root:
        return target
    if root not in target.parents:
        raise RepositoryIOError(f"path traversal blocked for extracted path: {relative_path}")
    return target


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(payload, ensure_ascii=False, indent=4, sort_keys=True)
    path.write_text(text + "\n", encoding="utf-8")


def remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


@contextmanager
def staging_dir(target: Path) -> Iterator[Path]:
    """Yield a fresh hidden sibling of ``target``; on success it replaces ``target``.

    The previous ``target`` is removed only after the rename succeeded. On any
    error the staging directory is discarded and ``target`` is left untouched.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    stage = Path(tempfile.mkdtemp(prefix=f".{target.name}.staging-", dir=target.parent))
    try:
        yield stage
        backup: Path | None = None
        if target.exists():
            backup = Path(tempfile.mkdtemp(prefix=f".{target.name}.old-", dir=target.parent))
            os.rmdir(backup)
            os.replace(target, backup)
        try:
            os.replace(stage, target)
        except OSError:
            if backup is not None:
                os.replace(backup, target)
            raise
        if backup is not None:
            shutil.rmtree(backup, ignore_errors=True)
    except BaseException:
        shutil.rmtree(stage, ignore_errors=True)
        raise
