from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urlsplit

import requests

from prm_core.archive import ARCHIVE_SUFFIX
from prm_core.errors import DownloadError, ExternalFetchError

from .models import HttpSourceConfig

logger = logging.getLogger(__name__)

INDEX_FILENAME = "versions.json"
HTTP_NOT_FOUND = 404
_CHUNK_SIZE = 256 * 1024


class ExternalRepository(Protocol):
    @property
    def source(self) -> str: ...

    def get_versions(self, name: str) -> dict[str, dict[str, Any]]: ...

    def download_to(self, name: str, version: str, dest: Path) -> bool: ...


def _normalize_listing(payload: Any, origin: str) -> dict[str, dict[str, Any]]:
    if not isinstance(payload, dict):
        raise ExternalFetchError(f"invalid version index from {origin}: expected an object")
    return {str(version): dict(info) if isinstance(info, dict) else {} for version, info in payload.items()}


def _check_segment(value: str, what: str) -> str:
    value = value.strip()
    if not value or value.startswith(".") or "/" in value or "\\" in value:
        raise ExternalFetchError(f"invalid {what}: {value!r}")
    return value


class HttpRepository:
    """Static package index served over HTTP(S).

    Layout (as produced by indexing)::

        <base>/<name>/versions.json
        <base>/<name>/<version>.tar.gz
    """

    def __init__(self, base_url: str, config: HttpSourceConfig | None = None, *, session: Any = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.config = config or HttpSourceConfig()
        self.session = session or requests.Session()

    @property
    def source(self) -> str:
        return self.base_url

    def _url(self, name: str, filename: str) -> str:
        return f"{self.base_url}/{_check_segment(name, 'package name')}/{filename}"

    def _headers(self) -> dict[str, str]:
        if self.config.token:
            return {"Authorization": f"Bearer {self.config.token}"}
        return {}

    def _get(self, url: str, *, stream: bool = False) -> requests.Response:
        timeout = max(float(self.config.timeout_seconds), 1.0)
        retries = max(int(self.config.max_retries), 1)
        backoff = max(float(self.config.backoff_seconds), 0.0)

        last_error: Exception | None = None
        for attempt in range(1, retries + 1):
            try:
                logger.debug("http GET attempt=%s/%s url=%s", attempt, retries, url)
                response = self.session.get(url, headers=self._headers(), timeout=timeout, stream=stream)
                if response.status_code < 500:
                    return response
                last_error = ExternalFetchError(f"GET {url} failed with status {response.status_code}")
                response.close()
            except requests.RequestException as exc:
                last_error = exc
            if attempt < retries:
                time.sleep(min(backoff * attempt, 2.0))
        raise ExternalFetchError(f"GET {url} failed after {retries} attempt(s): {last_error}") from last_error

    def get_versions(self, name: str) -> dict[str, dict[str, Any]]:
        url = self._url(name, INDEX_FILENAME)
        response = self._get(url)
        if response.status_code == HTTP_NOT_FOUND:
            return {}
        if response.status_code >= 400:
            raise ExternalFetchError(f"GET {url} failed with status {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalFetchError(f"invalid JSON from {url}") from exc
        return _normalize_listing(payload, url)

    def download_to(self, name: str, version: str, dest: Path) -> bool:
        try:
            url = self._url(name, f"{_check_segment(version, 'version')}{ARCHIVE_SUFFIX}")
            response = self._get(url, stream=True)
            with response:
                if response.status_code >= 400:
                    raise DownloadError(f"download of {name}@{version} failed: {response.status_code}")
                _stream_to_file(response.iter_content(chunk_size=_CHUNK_SIZE), dest)
        except (ExternalFetchError, requests.RequestException, OSError) as exc:
            logger.error("download of %s@%s from %s failed: %s", name, version, self.source, exc)
            return False
        return True


class GithubRepository(HttpRepository):
    """Package index kept in a GitHub repository, read through raw content URLs."""

    RAW_HOST = "https://raw.githubusercontent.com"

    def __init__(self, url: str, branch: str = "master", config: HttpSourceConfig | None = None, *, session: Any = None) -> None:
        parts = urlsplit(url)
        path = parts.path.strip("/")
        if path.endswith(".git"):
            path = path[: -len(".git")]
        if parts.netloc.lower() not in ("github.com", "www.github.com") or path.count("/") != 1:
            raise ValueError(f"not a GitHub repository URL: {url!r}")
        self.url = f"https://github.com/{path}"
        self.branch = branch
        super().__init__(f"{self.RAW_HOST}/{path}/{branch}", config, session=session)

    @property
    def source(self) -> str:
        return self.url


class DirectoryRepository:
    """Published index directory on the local filesystem."""

    def __init__(self, path: Path) -> None:
        self.path = path.resolve()

    @property
    def source(self) -> str:
        return self.path.as_uri()

    def get_versions(self, name: str) -> dict[str, dict[str, Any]]:
        index = self.path / _check_segment(name, "package name") / INDEX_FILENAME
        if not index.exists():
            return {}
        try:
            payload = json.loads(index.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise ExternalFetchError(f"unreadable version index {index}: {exc}") from exc
        return _normalize_listing(payload, str(index))

    def download_to(self, name: str, version: str, dest: Path) -> bool:
        try:
            archive = self.path / _check_segment(name, "package name") / f"{_check_segment(version, 'version')}{ARCHIVE_SUFFIX}"
            with archive.open("rb") as handle:
                _stream_to_file(iter(lambda: handle.read(_CHUNK_SIZE), b""), dest)
        except (ExternalFetchError, OSError) as exc:
            logger.error("download of %s@%s from %s failed: %s", name, version, self.source, exc)
            return False
        return True


def _stream_to_file(chunks: Any, dest: Path) -> None:
    """Write ``chunks`` to a temporary sibling and rename it onto ``dest``."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", suffix=".part", dir=dest.parent)
    try:
        with os.fdopen(fd, "wb") as out:
            for chunk in chunks:
                if chunk:
                    out.write(chunk)
        os.replace(tmp_name, dest)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def build_source(spec: dict[str, Any]) -> ExternalRepository:
    """Create a source from a ``[[sources]]`` configuration table."""
    kind = str(spec.get("type") or "http").strip().lower()
    url = str(spec.get("url") or spec.get("path") or "").strip()
    if not url:
        raise ValueError("source entry requires 'url'")
    config = HttpSourceConfig(
        timeout_seconds=float(spec.get("timeout_seconds", 30.0)),
        max_retries=int(spec.get("max_retries", 2)),
        backoff_seconds=float(spec.get("backoff_seconds", 0.2)),
        token=str(spec.get("token") or "").strip() or None,
    )
    if kind == "github":
        return GithubRepository(url, branch=str(spec.get("branch") or "master"), config=config)
    if kind == "http":
        return HttpRepository(url, config)
    if kind == "dir":
        if url.startswith("file://"):
            url = urlsplit(url).path
        return DirectoryRepository(Path(url).expanduser())
    raise ValueError(f"unsupported source type: {kind!r}")
