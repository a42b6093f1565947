"""HTTP front for a published package index.

Serves the static layout written by indexing, so a running registry can be
registered as an ``http`` source by other installations.
"""

from __future__ import annotations

import logging
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse

from prm_core.archive import ARCHIVE_SUFFIX
from prm_core.index import INDEX_FILENAME, MODULES_FILENAME

from .settings import RegistrySettings

log = logging.getLogger(__name__)

_MEDIA_TYPES = {
    ARCHIVE_SUFFIX: "application/gzip",
    ".json": "application/json",
    ".md": "text/markdown; charset=utf-8",
}


def _media_type(filename: str) -> str | None:
    for suffix, media_type in _MEDIA_TYPES.items():
        if filename.endswith(suffix):
            return media_type
    return None


def _segment(value: str) -> str:
    if not value or value.startswith(".") or "/" in value or "\\" in value:
        raise HTTPException(status_code=404, detail="not found")
    return value


def make_app(settings: RegistrySettings) -> FastAPI:
    root = settings.index_dir

    app = FastAPI(title="prm registry", version="0.1.0")

    def _serve(path: Path) -> FileResponse:
        if not path.is_file():
            raise HTTPException(status_code=404, detail="not found")
        return FileResponse(path, media_type=_media_type(path.name))

    @app.get("/health")
    def health():
        return {"ok": True, "index_dir": str(root)}

    @app.get(f"/{MODULES_FILENAME}")
    def modules():
        return _serve(root / MODULES_FILENAME)

    @app.get("/{name}/{filename}")
    def module_file(name: str, filename: str):
        name = _segment(name)
        filename = _segment(filename)
        if filename != INDEX_FILENAME and _media_type(filename) is None:
            raise HTTPException(status_code=404, detail="not found")
        log.debug("serve %s/%s", name, filename)
        return _serve(root / name / filename)

    return app
