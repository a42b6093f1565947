from .cache import CACHE_FILENAME, JsonCacheStore, VersionCache
from .models import LOCAL, CacheEntry, HttpSourceConfig, LocalOrigin, Origin, RemoteListing, RemoteOrigin, merge_origins
from .repositories import DirectoryRepository, ExternalRepository, GithubRepository, HttpRepository, build_source

__all__ = [
    "CACHE_FILENAME",
    "CacheEntry",
    "DirectoryRepository",
    "ExternalRepository",
    "GithubRepository",
    "HttpRepository",
    "HttpSourceConfig",
    "JsonCacheStore",
    "LOCAL",
    "LocalOrigin",
    "Origin",
    "RemoteListing",
    "RemoteOrigin",
    "VersionCache",
    "build_source",
    "merge_origins",
]
