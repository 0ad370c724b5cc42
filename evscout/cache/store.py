"""
Per-sport snapshot store.

Holds one immutable CacheSnapshot per sport. Every change (refresh start,
progress, completion, failure) builds a new snapshot and swaps the
reference, so a reader never sees odds from one cycle next to progress
from another. The scheduler is the only writer.

Subscribers are notified synchronously after each swap with a
SnapshotEvent ("snapshot" or "progress").
"""

import asyncio
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Iterable, Optional

import orjson
import structlog

from evscout.errors import PersistenceError
from evscout.models.schemas import (
    CacheSnapshot,
    FixtureResult,
    Opportunity,
    RefreshProgress,
    RefreshState,
    Sport,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class SnapshotEvent:
    """Pushed to subscribers after every swap."""
    kind: str               # "snapshot" or "progress"
    sport: Sport
    snapshot: CacheSnapshot

    @property
    def topic(self) -> str:
        """Channel name for live UIs: "nba" or "nba:progress"."""
        if self.kind == "progress":
            return f"{self.sport.value}:progress"
        return self.sport.value


SnapshotListener = Callable[[SnapshotEvent], None]


class SnapshotStore:
    """
    Owner of the per-sport CacheSnapshots.

    Usage:
        store = SnapshotStore()
        unsubscribe = store.subscribe(lambda event: print(event.topic))
        snapshot = store.get_snapshot(Sport.NBA)
    """

    def __init__(self, persist_path: Optional[str] = None):
        self.persist_path = Path(persist_path) if persist_path else None
        self.logger = logger.bind(component="snapshot_store")

        self._snapshots: dict[Sport, CacheSnapshot] = {
            sport: CacheSnapshot(sport=sport) for sport in Sport
        }
        self._callbacks: list[SnapshotListener] = []

    # =========================================================================
    # Read Path
    # =========================================================================

    def get_snapshot(self, sport: Sport) -> CacheSnapshot:
        """Current snapshot for a sport. Immutable; hold it as long as needed."""
        return self._snapshots[sport]

    def status(self, sport: Sport) -> dict:
        """{state, last_updated_ms, is_refreshing, error, progress, ...}"""
        return self._snapshots[sport].status()

    def is_stale(self, sport: Sport, max_age_seconds: float = 600) -> bool:
        """True when the sport never refreshed or its data is older than max_age_seconds."""
        last_updated = self._snapshots[sport].last_updated_ms
        if last_updated is None:
            return True
        return (time.time() * 1000 - last_updated) > max_age_seconds * 1000

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, callback: SnapshotListener) -> Callable[[], None]:
        """Register for swap notifications. Returns an unsubscribe function."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def _notify_callbacks(self, event: SnapshotEvent) -> None:
        """Notify all registered callbacks."""
        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception as e:
                self.logger.error("Subscriber callback error", sport=event.sport.value, error=str(e))

    def _swap(self, snapshot: CacheSnapshot, kind: str) -> CacheSnapshot:
        self._snapshots[snapshot.sport] = snapshot
        self._notify_callbacks(SnapshotEvent(kind=kind, sport=snapshot.sport, snapshot=snapshot))
        return snapshot

    # =========================================================================
    # Write Path (scheduler only)
    # =========================================================================

    def begin_refresh(self, sport: Sport) -> CacheSnapshot:
        """Mark a sport as refreshing; cached data stays readable."""
        current = self._snapshots[sport]
        return self._swap(
            replace(
                current,
                state=RefreshState.REFRESHING,
                progress=RefreshProgress(current=0, total=0, step="starting", message="Starting refresh..."),
            ),
            "progress",
        )

    def set_progress(self, sport: Sport, progress: Optional[RefreshProgress]) -> CacheSnapshot:
        """Replace the progress record (None clears it)."""
        return self._swap(replace(self._snapshots[sport], progress=progress), "progress")

    def publish(
        self,
        sport: Sport,
        fixtures: Iterable[FixtureResult],
        opportunities: Iterable[Opportunity],
        duration_seconds: Optional[float] = None,
    ) -> CacheSnapshot:
        """Swap in a completed cycle's results."""
        ranked = sorted(opportunities, key=lambda o: o.ev_percent, reverse=True)
        snapshot = CacheSnapshot(
            sport=sport,
            fixtures=tuple(fixtures),
            opportunities=tuple(ranked),
            state=RefreshState.IDLE,
            last_updated_ms=int(time.time() * 1000),
            error=None,
            progress=RefreshProgress(
                current=100,
                total=100,
                step="complete",
                message=f"Complete: {len(ranked)} EV bets found",
                percent=100,
            ),
            duration_seconds=duration_seconds,
        )
        self.logger.info(
            "Snapshot published",
            sport=sport.value,
            fixtures=len(snapshot.fixtures),
            opportunities=len(snapshot.opportunities),
        )
        return self._swap(snapshot, "snapshot")

    def fail(self, sport: Sport, message: str) -> CacheSnapshot:
        """Record a failed cycle; the last good fixtures and opportunities are kept."""
        current = self._snapshots[sport]
        snapshot = replace(
            current,
            state=RefreshState.ERROR,
            error=message,
            progress=RefreshProgress(current=0, total=100, step="error", message=f"Error: {message}"),
        )
        self.logger.warning("Refresh failed", sport=sport.value, error=message)
        return self._swap(snapshot, "snapshot")

    def abort_refresh(self, sport: Sport, previous: CacheSnapshot) -> CacheSnapshot:
        """Drop an abandoned cycle; state and error go back to what `previous` held."""
        snapshot = replace(
            self._snapshots[sport],
            state=previous.state,
            error=previous.error,
            progress=None,
        )
        self.logger.info("Refresh aborted", sport=sport.value, state=previous.state.value)
        return self._swap(snapshot, "snapshot")

    # =========================================================================
    # Persistence
    # =========================================================================

    def _write(self) -> None:
        if self.persist_path is None:
            return
        payload = {
            sport.value: snapshot.to_dict()
            for sport, snapshot in self._snapshots.items()
            if snapshot.last_updated_ms is not None
        }
        try:
            self.persist_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.persist_path.with_suffix(".tmp")
            tmp_path.write_bytes(orjson.dumps(payload))
            tmp_path.replace(self.persist_path)
        except OSError as e:
            raise PersistenceError(f"Could not write {self.persist_path}: {e}") from e

    async def save(self) -> bool:
        """Persist completed snapshots. Failures are logged, never raised."""
        if self.persist_path is None:
            return False
        try:
            await asyncio.to_thread(self._write)
            return True
        except PersistenceError as e:
            self.logger.error("Snapshot save failed", error=str(e))
            return False

    def load(self) -> int:
        """Restore persisted snapshots at startup. Returns the number restored."""
        if self.persist_path is None or not self.persist_path.exists():
            return 0
        try:
            payload = orjson.loads(self.persist_path.read_bytes())
            restored = [CacheSnapshot.from_dict(data) for data in payload.values()]
        except (OSError, orjson.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            self.logger.error("Snapshot load failed", path=str(self.persist_path), error=str(e))
            return 0

        for snapshot in restored:
            self._snapshots[snapshot.sport] = snapshot
        self.logger.info("Snapshots restored", count=len(restored))
        return len(restored)

    def get_metrics(self) -> dict:
        return {
            sport.value: snapshot.status()
            for sport, snapshot in self._snapshots.items()
        }
