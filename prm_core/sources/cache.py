from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Protocol

from prm_core.errors import CacheCorruptError, ExternalFetchError

from .models import CacheEntry

logger = logging.getLogger(__name__)

CACHE_FILENAME = "cache.json"
DEFAULT_TTL_SECONDS = 600


class CacheStore(Protocol):
    def load(self) -> dict[str, Any]: ...

    def save(self, payload: dict[str, Any]) -> None: ...


class ListingSource(Protocol):
    @property
    def source(self) -> str: ...

    def get_versions(self, name: str) -> dict[str, dict[str, Any]]: ...


class JsonCacheStore:
    """Persists the cache document as pretty-printed JSON."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CacheCorruptError(f"unreadable cache file {self.path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise CacheCorruptError(f"cache file {self.path} is not an object")
        return payload

    def save(self, payload: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=False, indent=4, sort_keys=True)
            os.replace(tmp_name, self.path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def _now_millis() -> int:
    return int(time.time() * 1000)


class VersionCache:
    """TTL-bounded cache of remote version listings keyed by (source, package).

    A failed fetch never propagates: the previous listing (or an empty one) is
    kept and its timestamp refreshed, so a flaky source is retried only after
    the TTL expires again.
    """

    def __init__(
        self,
        store: CacheStore,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], int] = _now_millis,
    ) -> None:
        self.store = store
        self.ttl_millis = int(ttl_seconds * 1000)
        self.clock = clock
        self._entries: dict[str, dict[str, CacheEntry]] = self._load()
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._save_lock = threading.Lock()

    def _load(self) -> dict[str, dict[str, CacheEntry]]:
        try:
            payload = self.store.load()
        except CacheCorruptError as exc:
            logger.warning("ignoring corrupt version cache: %s", exc)
            return {}
        external = payload.get("external") if isinstance(payload, dict) else None
        if not isinstance(external, dict):
            return {}
        entries: dict[str, dict[str, CacheEntry]] = {}
        for source, packages in external.items():
            if not isinstance(packages, dict):
                continue
            for name, raw in packages.items():
                if not isinstance(raw, dict):
                    continue
                versions = raw.get("versions")
                try:
                    stamp = int(raw.get("time") or 0)
                except (TypeError, ValueError):
                    stamp = 0
                entries.setdefault(str(source), {})[str(name)] = CacheEntry(
                    versions=dict(versions) if isinstance(versions, dict) else {},
                    time=stamp,
                )
        return entries

    def _lock_for(self, source: str, name: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault((source, name), threading.Lock())

    def entry(self, source: str, name: str) -> CacheEntry | None:
        return self._entries.get(source, {}).get(name)

    def is_fresh(self, entry: CacheEntry | None) -> bool:
        return entry is not None and self.clock() - entry.time < self.ttl_millis

    def get_versions(self, repository: ListingSource, name: str) -> dict[str, Any]:
        source = repository.source
        with self._lock_for(source, name):
            cached = self.entry(source, name)
            if self.is_fresh(cached):
                logger.debug("version cache hit %s (%s)", name, source)
                return dict(cached.versions)

            logger.info("-> get versions of package %s, source: %s", name, source)
            try:
                versions = repository.get_versions(name)
                if not isinstance(versions, dict):
                    raise ValueError("version listing must be a mapping")
                entry = CacheEntry(versions=dict(versions), time=self.clock())
            except (ExternalFetchError, OSError, ValueError) as exc:
                logger.warning("failed to list versions of %s from %s: %s", name, source, exc)
                entry = CacheEntry(versions=dict(cached.versions) if cached else {}, time=self.clock())

            self._store_entry(source, name, entry)
            return dict(entry.versions)

    def get_version_info(self, repository: ListingSource, name: str, version: str) -> dict[str, Any] | None:
        info = self.get_versions(repository, name).get(version)
        if info is None:
            return None
        result = dict(info) if isinstance(info, dict) else {}
        result["repo"] = repository.source
        return result

    def invalidate(self, source: str | None = None) -> None:
        with self._save_lock:
            if source is None:
                self._entries.clear()
            else:
                self._entries.pop(source, None)
            self._persist()

    def _store_entry(self, source: str, name: str, entry: CacheEntry) -> None:
        with self._save_lock:
            self._entries.setdefault(source, {})[name] = entry
            self._persist()

    def to_dict(self) -> dict[str, Any]:
        return {
            "external": {
                source: {name: entry.to_dict() for name, entry in packages.items()}
                for source, packages in self._entries.items()
            }
        }

    def _persist(self) -> None:
        try:
            self.store.save(self.to_dict())
        except OSError as exc:
            logger.warning("failed to persist version cache: %s", exc)
