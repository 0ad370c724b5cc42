"""
Tracked bet storage.

BetLedger is the single view of alert lifecycle state used by both the
alert path (should this opportunity alert?) and the action path (the
operator pressed a button). It keeps every known TrackedBet in memory and
treats a BetStore as best-effort durable backing:

- reads are cache-first; a durable read is bounded by a timeout and a
  failure counts as "unknown"
- transitions are validated and applied in memory, synchronously
- durable writes are separate, bounded by a timeout, and only logged on
  failure

Concurrent writers are not locked against each other; the later
timestamped transition wins.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import numpy as np
import orjson
import structlog

from evscout.alerts.lifecycle import can_transition
from evscout.errors import PersistenceError
from evscout.models.schemas import BetStatus, Opportunity, TrackedBet

logger = structlog.get_logger()

DAY_MS = 24 * 60 * 60 * 1000


# =============================================================================
# Durable Stores
# =============================================================================

class BetStore(ABC):
    """Durable TrackedBet storage keyed by bet key."""

    @abstractmethod
    async def get(self, key: str) -> Optional[TrackedBet]:
        pass

    @abstractmethod
    async def put(self, bet: TrackedBet) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def all(self) -> list[TrackedBet]:
        pass


class MemoryBetStore(BetStore):
    """Process-local store; state is lost on restart."""

    def __init__(self):
        self._bets: dict[str, dict] = {}

    async def get(self, key: str) -> Optional[TrackedBet]:
        data = self._bets.get(key)
        return TrackedBet.from_dict(data) if data else None

    async def put(self, bet: TrackedBet) -> None:
        self._bets[bet.key] = bet.to_dict()

    async def delete(self, key: str) -> None:
        self._bets.pop(key, None)

    async def all(self) -> list[TrackedBet]:
        return [TrackedBet.from_dict(data) for data in self._bets.values()]


class JsonFileBetStore(BetStore):
    """
    All bets in one JSON object file ({key: record}).

    File I/O runs in a worker thread; writes replace the file atomically.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._records: Optional[dict[str, dict]] = None
        self._lock = asyncio.Lock()

    def _read_file(self) -> dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            return orjson.loads(self.path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            raise PersistenceError(f"Could not read {self.path}: {e}") from e

    def _write_file(self, records: dict[str, dict]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".tmp")
            tmp_path.write_bytes(orjson.dumps(records, option=orjson.OPT_INDENT_2))
            tmp_path.replace(self.path)
        except OSError as e:
            raise PersistenceError(f"Could not write {self.path}: {e}") from e

    async def _ensure_loaded(self) -> dict[str, dict]:
        if self._records is None:
            self._records = await asyncio.to_thread(self._read_file)
        return self._records

    async def get(self, key: str) -> Optional[TrackedBet]:
        async with self._lock:
            records = await self._ensure_loaded()
            data = records.get(key)
        return TrackedBet.from_dict(data) if data else None

    async def put(self, bet: TrackedBet) -> None:
        async with self._lock:
            records = await self._ensure_loaded()
            records[bet.key] = bet.to_dict()
            await asyncio.to_thread(self._write_file, dict(records))

    async def delete(self, key: str) -> None:
        async with self._lock:
            records = await self._ensure_loaded()
            if records.pop(key, None) is not None:
                await asyncio.to_thread(self._write_file, dict(records))

    async def all(self) -> list[TrackedBet]:
        async with self._lock:
            records = await self._ensure_loaded()
            values = list(records.values())
        return [TrackedBet.from_dict(data) for data in values]


# =============================================================================
# Ledger
# =============================================================================

class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    REJECTED = "rejected"
    UNKNOWN = "unknown"


@dataclass
class TransitionResult:
    """Result of BetLedger.apply()."""
    outcome: TransitionOutcome
    key: str
    target: BetStatus
    previous: Optional[BetStatus] = None
    record: Optional[TrackedBet] = None

    @property
    def applied(self) -> bool:
        return self.outcome == TransitionOutcome.APPLIED


class BetLedger:
    """
    Cache-first lifecycle ledger over an optional durable BetStore.

    Usage:
        ledger = BetLedger(JsonFileBetStore("data/bets.json"))
        await ledger.load()
        record = await ledger.lookup(opportunity.bet_key)
        ledger.record_sent(opportunity, message_ref=42)
        await ledger.persist(opportunity.bet_key)
    """

    def __init__(self, store: Optional[BetStore] = None, timeout: float = 5.0):
        self.store = store
        self.timeout = timeout
        self.logger = logger.bind(component="bet_ledger")

        self._cache: dict[str, TrackedBet] = {}

        # Stats
        self._persist_failures = 0
        self._lookup_failures = 0

    # =========================================================================
    # Reads
    # =========================================================================

    def get(self, key: str) -> Optional[TrackedBet]:
        """In-memory record only; never touches the durable store."""
        return self._cache.get(key)

    async def lookup(self, key: str, timeout: Optional[float] = None) -> Optional[TrackedBet]:
        """
        Last known record for a key.

        Cache first, then the durable store bounded by a timeout. A store
        failure or timeout is logged and returns None.
        """
        cached = self._cache.get(key)
        if cached is not None or self.store is None:
            return cached

        try:
            record = await asyncio.wait_for(self.store.get(key), timeout or self.timeout)
        except (PersistenceError, asyncio.TimeoutError) as e:
            self._lookup_failures += 1
            self.logger.warning("Bet lookup failed", key=key, error=str(e) or type(e).__name__)
            return None

        if record is not None:
            self._cache[key] = record
        return record

    async def load(self) -> int:
        """Warm the cache from the durable store. Returns the number loaded."""
        if self.store is None:
            return 0
        try:
            records = await asyncio.wait_for(self.store.all(), self.timeout)
        except (PersistenceError, asyncio.TimeoutError) as e:
            self.logger.error("Bet ledger load failed", error=str(e) or type(e).__name__)
            return 0

        for record in records:
            self._cache[record.key] = record
        self.logger.info("Bet ledger loaded", count=len(records))
        return len(records)

    # =========================================================================
    # Writes (in memory)
    # =========================================================================

    def record_sent(
        self,
        opportunity: Opportunity,
        message_ref: Optional[int],
        now_ms: Optional[int] = None,
    ) -> TrackedBet:
        """Record that an alert went out. A re-alert restarts the cooldown clock."""
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        key = opportunity.bet_key
        previous = self._cache.get(key)

        history = list(previous.history) if previous else []
        history.append({"status": BetStatus.SENT.value, "at_ms": now_ms})

        record = TrackedBet(
            key=key,
            status=BetStatus.SENT,
            first_sent_ms=now_ms,
            status_changed_ms=now_ms,
            sport=opportunity.sport,
            ev_percent=opportunity.ev_percent,
            message_ref=message_ref,
            opportunity=opportunity.to_dict(),
            history=history,
        )
        self._cache[key] = record
        return record

    def apply(self, key: str, target: BetStatus, at_ms: Optional[int] = None) -> TransitionResult:
        """Validate and apply a lifecycle transition in memory."""
        record = self._cache.get(key)
        if record is None:
            return TransitionResult(TransitionOutcome.UNKNOWN, key, target)

        previous = record.status
        if not can_transition(previous, target):
            self.logger.info(
                "Transition rejected",
                key=key,
                current=previous.value,
                target=target.value,
            )
            return TransitionResult(TransitionOutcome.REJECTED, key, target, previous, record)

        at_ms = at_ms if at_ms is not None else int(time.time() * 1000)
        record.status = target
        record.status_changed_ms = max(record.status_changed_ms, at_ms)
        record.history.append({"status": target.value, "at_ms": at_ms})

        self.logger.info("Bet status changed", key=key, previous=previous.value, status=target.value)
        return TransitionResult(TransitionOutcome.APPLIED, key, target, previous, record)

    def set_message_ref(self, key: str, message_ref: Optional[int]) -> None:
        record = self._cache.get(key)
        if record is not None:
            record.message_ref = message_ref

    # =========================================================================
    # Writes (durable)
    # =========================================================================

    async def persist(self, key: str) -> bool:
        """Write one record to the durable store, bounded by the ledger timeout."""
        record = self._cache.get(key)
        if record is None or self.store is None:
            return False
        try:
            await asyncio.wait_for(self.store.put(record), self.timeout)
            return True
        except (PersistenceError, asyncio.TimeoutError) as e:
            self._persist_failures += 1
            self.logger.error("Bet persist failed", key=key, error=str(e) or type(e).__name__)
            return False

    async def sweep(self, retention_days: float = 30, now_ms: Optional[int] = None) -> int:
        """
        Drop settled, dismissed and never-acted-on bets older than the retention window.

        Tracked bets are kept regardless of age. Returns the number removed.
        """
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        cutoff = now_ms - retention_days * DAY_MS

        expired = [
            key for key, record in self._cache.items()
            if record.status != BetStatus.TRACKED and record.status_changed_ms < cutoff
        ]
        for key in expired:
            del self._cache[key]
            if self.store is None:
                continue
            try:
                await asyncio.wait_for(self.store.delete(key), self.timeout)
            except (PersistenceError, asyncio.TimeoutError) as e:
                self.logger.error("Bet delete failed", key=key, error=str(e) or type(e).__name__)

        if expired:
            self.logger.info("Old bets swept", removed=len(expired), retention_days=retention_days)
        return len(expired)

    # =========================================================================
    # Queries
    # =========================================================================

    def tracked(self) -> list[TrackedBet]:
        """Bets the operator is watching, most recently tracked first."""
        bets = [b for b in self._cache.values() if b.status == BetStatus.TRACKED]
        return sorted(bets, key=lambda b: b.status_changed_ms, reverse=True)

    def recent(self, days: float = 7, now_ms: Optional[int] = None) -> list[TrackedBet]:
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        cutoff = now_ms - days * DAY_MS
        bets = [b for b in self._cache.values() if b.first_sent_ms >= cutoff]
        return sorted(bets, key=lambda b: b.first_sent_ms, reverse=True)

    def stats(self) -> dict:
        """Counts per status, average EV and win rate over settled (won/lost) bets."""
        bets = list(self._cache.values())
        counts = {status.value: 0 for status in BetStatus}
        for bet in bets:
            counts[bet.status.value] += 1

        settled = counts["won"] + counts["lost"]
        return {
            "total": len(bets),
            **counts,
            "avg_ev": float(np.mean([b.ev_percent for b in bets])) if bets else 0.0,
            "win_rate": counts["won"] / settled * 100 if settled else None,
        }

    def get_metrics(self) -> dict:
        return {
            "cached": len(self._cache),
            "durable": self.store is not None,
            "lookup_failures": self._lookup_failures,
            "persist_failures": self._persist_failures,
        }
