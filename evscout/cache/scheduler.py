"""
Refresh scheduler.

Each sport refreshes on its own interval timer, started with a fixed
offset so the sports never hit the rate-limited odds feed at the same
moment (NBA at 0s, football at 120s, then every 5 minutes).

State per sport: idle -> refreshing -> idle | error.

A per-sport flag stops a second cycle from starting while one is running;
a manual refresh obeys the same flag. A failed cycle leaves the previous
snapshot readable and exposes the error as status metadata.

Cycles run in their own tasks. stop() only ends the interval timers;
drain() lets in-flight cycles finish and aborts whatever is left after its
timeout, putting the sport back in the state it had before the cycle.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional

import structlog

from evscout.cache.builder import BuildResult, CacheBuilder
from evscout.cache.store import SnapshotStore
from evscout.models.schemas import CacheSnapshot, Opportunity, RefreshState, Sport
from evscout.utils.logging import RefreshMetricsLogger

logger = structlog.get_logger()


RefreshHook = Callable[[Sport, list[Opportunity]], Awaitable[object]]


class RefreshScheduler:
    """
    Staggered, non-overlapping refresh cycles per sport.

    Usage:
        scheduler = RefreshScheduler(store, {Sport.NBA: nba_builder})
        await scheduler.refresh(Sport.NBA)          # manual, waits for completion
        await scheduler.refresh(Sport.NBA, wait=False)  # returns immediately
        await scheduler.run()                       # interval loops until stop()
    """

    def __init__(
        self,
        store: SnapshotStore,
        builders: dict[Sport, CacheBuilder],
        interval_seconds: float = 300.0,
        offsets: Optional[dict[Sport, float]] = None,
        progress_clear_delay: float = 2.0,
        on_refreshed: Optional[RefreshHook] = None,
        metrics_logger: Optional[RefreshMetricsLogger] = None,
    ):
        self.store = store
        self.builders = builders
        self.interval_seconds = interval_seconds
        self.offsets = offsets or {Sport.NBA: 0.0, Sport.FOOTBALL: 120.0}
        self.progress_clear_delay = progress_clear_delay
        self.on_refreshed = on_refreshed
        self.metrics_logger = metrics_logger

        self.logger = logger.bind(component="refresh_scheduler")

        # Re-entrancy guard
        self._refreshing: dict[Sport, bool] = {sport: False for sport in builders}

        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._background: set[asyncio.Task] = set()

        # Stats
        self._cycles_completed: dict[Sport, int] = {sport: 0 for sport in builders}
        self._cycles_failed: dict[Sport, int] = {sport: 0 for sport in builders}
        self._cycles_skipped: dict[Sport, int] = {sport: 0 for sport in builders}

    # =========================================================================
    # Manual Refresh
    # =========================================================================

    def is_refreshing(self, sport: Sport) -> bool:
        return self._refreshing.get(sport, False)

    async def refresh(self, sport: Sport, wait: bool = True) -> Optional[BuildResult]:
        """
        Trigger a refresh cycle for one sport.

        Returns None without doing anything if that sport is already
        refreshing. With wait=False None is returned immediately. Either
        way the cycle runs in its own task, so cancelling the caller does
        not cancel the cycle.
        """
        if sport not in self.builders:
            self.logger.warning("No builder for sport", sport=sport.value)
            return None

        if self._refreshing[sport]:
            self._cycles_skipped[sport] += 1
            self.logger.info("Refresh already in progress, skipping", sport=sport.value)
            if self.metrics_logger:
                self.metrics_logger.log_refresh(sport.value, "skipped", {})
            return None

        # No await between the check and the set
        self._refreshing[sport] = True
        previous = self.store.get_snapshot(sport)
        self.store.begin_refresh(sport)
        self.logger.info("Refresh started", sport=sport.value)

        task = asyncio.create_task(self._run_cycle(sport, previous))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

        if not wait:
            return None
        return await asyncio.shield(task)

    async def refresh_all(self, wait: bool = True) -> dict[Sport, Optional[BuildResult]]:
        """Trigger every sport; sports run concurrently."""
        sports = list(self.builders)
        results = await asyncio.gather(*(self.refresh(sport, wait=wait) for sport in sports))
        return dict(zip(sports, results))

    def status(self, sport: Sport) -> dict:
        """{state, last_updated_ms, is_refreshing, error, progress, ...}"""
        return self.store.status(sport)

    # =========================================================================
    # Cycle
    # =========================================================================

    async def _run_cycle(self, sport: Sport, previous: CacheSnapshot) -> Optional[BuildResult]:
        builder = self.builders[sport]
        started = time.time()
        result: Optional[BuildResult] = None

        try:
            result = await builder.build(on_progress=lambda p: self.store.set_progress(sport, p))
            self.store.publish(sport, result.fixtures, result.opportunities, result.duration_seconds)
            self._cycles_completed[sport] += 1

        except asyncio.CancelledError:
            self.store.abort_refresh(sport, previous)
            raise
        except Exception as e:
            self._cycles_failed[sport] += 1
            self.store.fail(sport, str(e))
            self.logger.error(
                "Refresh failed",
                sport=sport.value,
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(time.time() - started, 2),
            )
            if self.metrics_logger:
                self.metrics_logger.log_refresh(sport.value, "error", {"error": str(e)})
            return None
        finally:
            self._refreshing[sport] = False

        self._schedule_progress_clear(sport)

        if self.metrics_logger:
            self.metrics_logger.log_refresh(sport.value, "ok", result.summary())

        if self.on_refreshed:
            try:
                await self.on_refreshed(sport, result.opportunities)
            except Exception as e:
                self.logger.error("Post-refresh hook failed", sport=sport.value, error=str(e))

        return result

    def _schedule_progress_clear(self, sport: Sport) -> None:
        if self.progress_clear_delay <= 0:
            self._clear_progress(sport)
            return
        asyncio.get_running_loop().call_later(self.progress_clear_delay, self._clear_progress, sport)

    def _clear_progress(self, sport: Sport) -> None:
        snapshot = self.store.get_snapshot(sport)
        # A newer cycle may already own the progress record
        if snapshot.state == RefreshState.IDLE and snapshot.progress is not None:
            self.store.set_progress(sport, None)

    # =========================================================================
    # Interval Loops
    # =========================================================================

    async def _sport_loop(self, sport: Sport) -> None:
        offset = self.offsets.get(sport, 0.0)
        if offset > 0:
            self.logger.info("Delaying first refresh", sport=sport.value, seconds=offset)
            await asyncio.sleep(offset)

        while self._running:
            try:
                await self.refresh(sport)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Refresh loop error", sport=sport.value, error=str(e))
            await asyncio.sleep(self.interval_seconds)

    async def run(self) -> None:
        """Run every sport's interval loop until stop() is called."""
        self._running = True
        self.logger.info(
            "Scheduler started",
            sports=[s.value for s in self.builders],
            interval_seconds=self.interval_seconds,
            offsets={s.value: o for s, o in self.offsets.items() if s in self.builders},
        )
        self._tasks = [asyncio.create_task(self._sport_loop(sport)) for sport in self.builders]
        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            self.logger.info("Scheduler cancelled")

    def stop(self) -> None:
        """Stop the interval timers. In-flight cycles keep running; see drain()."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        self._tasks = []

    async def drain(self, timeout: float = 5.0) -> int:
        """
        Wait up to `timeout` for in-flight cycles, then cancel the rest.

        Returns the number of cycles cancelled.
        """
        pending = set(self._background)
        if not pending:
            return 0

        _, pending = await asyncio.wait(pending, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            self.logger.warning("Refresh cycles cancelled on shutdown", count=len(pending))
        return len(pending)

    def get_metrics(self) -> dict:
        return {
            sport.value: {
                "refreshing": self._refreshing[sport],
                "completed": self._cycles_completed[sport],
                "failed": self._cycles_failed[sport],
                "skipped": self._cycles_skipped[sport],
            }
            for sport in self.builders
        }
