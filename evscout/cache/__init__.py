"""Per-sport opportunity cache and refresh orchestration."""

from evscout.cache.store import SnapshotStore, SnapshotEvent
from evscout.cache.builder import CacheBuilder, SportProfile, BuildResult
from evscout.cache.scheduler import RefreshScheduler

__all__ = [
    "SnapshotStore",
    "SnapshotEvent",
    "CacheBuilder",
    "SportProfile",
    "BuildResult",
    "RefreshScheduler",
]
