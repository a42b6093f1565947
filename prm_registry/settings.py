from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class RegistrySettings:
    index_dir: Path
    host: str = "127.0.0.1"
    port: int = 8787

    @classmethod
    def from_env(cls, index_dir: Path | None = None, default_dir: Path | None = None) -> RegistrySettings:
        """Explicit directory, then $PRM_REGISTRY_DIR, then ``default_dir`` (or the cwd)."""
        raw_dir = index_dir or os.getenv("PRM_REGISTRY_DIR") or default_dir or "."
        return cls(
            index_dir=Path(raw_dir).expanduser().resolve(),
            host=os.getenv("PRM_REGISTRY_HOST", "127.0.0.1"),
            port=int(os.getenv("PRM_REGISTRY_PORT", "8787")),
        )
