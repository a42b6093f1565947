"""Workspace layout and ``config/config.toml`` loading."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .sources.cache import DEFAULT_TTL_SECONDS

logger = logging.getLogger(__name__)

HOME_ENV = "PRM_HOME"
DEFAULT_HOME = ".prm"


def _resolve_env_value(value: Any) -> Any:
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        env_name = value[2:-1].strip()
        if env_name:
            return os.getenv(env_name, "")
    return value


def _resolve_env(payload: Any) -> Any:
    if isinstance(payload, dict):
        return {key: _resolve_env(value) for key, value in payload.items()}
    if isinstance(payload, list):
        return [_resolve_env(item) for item in payload]
    return _resolve_env_value(payload)


@dataclass(frozen=True)
class WorkspaceLayout:
    root: Path

    @property
    def packages_dir(self) -> Path:
        return self.root / "packages"

    @property
    def config_dir(self) -> Path:
        return self.root / "config"

    @property
    def config_path(self) -> Path:
        return self.config_dir / "config.toml"


@dataclass(frozen=True)
class RepositoryConfig:
    ttl_seconds: float = DEFAULT_TTL_SECONDS
    max_workers: int = 4
    sources: tuple[dict[str, Any], ...] = field(default_factory=tuple)


def resolve_home(explicit: str | Path | None = None) -> Path:
    raw = explicit or os.getenv(HOME_ENV) or DEFAULT_HOME
    return Path(raw).expanduser().resolve()


def load_config(layout: WorkspaceLayout) -> RepositoryConfig:
    """Read the workspace config; a missing or unreadable file yields defaults."""
    path = layout.config_path
    if not path.exists():
        return RepositoryConfig()
    try:
        payload = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning("ignoring unreadable config %s: %s", path, exc)
        return RepositoryConfig()
    payload = _resolve_env(payload)

    section = payload.get("repository")
    section = section if isinstance(section, dict) else {}
    sources = payload.get("sources")
    sources = sources if isinstance(sources, list) else []
    return RepositoryConfig(
        ttl_seconds=float(section.get("ttl_seconds", DEFAULT_TTL_SECONDS)),
        max_workers=max(int(section.get("max_workers", 4)), 1),
        sources=tuple(item for item in sources if isinstance(item, dict)),
    )
