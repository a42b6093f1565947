"""HTTP registry serving a published prm index."""

from .api import make_app
from .settings import RegistrySettings

__all__ = ["RegistrySettings", "make_app"]
