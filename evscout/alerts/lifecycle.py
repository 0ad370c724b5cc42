"""
Alert lifecycle rules.

    sent ──> tracked ──> won | lost | push
      └────> dismissed

dismissed, won, lost and push accept no further transition. Whether a
recomputed opportunity may alert again is decided by should_alert() from
the last known record for its bet key.
"""

from collections import OrderedDict
from typing import Optional

from evscout.models.schemas import ActionType, BetStatus, TrackedBet, make_bet_key

ALLOWED_TRANSITIONS: dict[BetStatus, frozenset[BetStatus]] = {
    BetStatus.SENT: frozenset({BetStatus.TRACKED, BetStatus.DISMISSED}),
    BetStatus.TRACKED: frozenset({BetStatus.WON, BetStatus.LOST, BetStatus.PUSH}),
    BetStatus.DISMISSED: frozenset(),
    BetStatus.WON: frozenset(),
    BetStatus.LOST: frozenset(),
    BetStatus.PUSH: frozenset(),
}

ACTION_STATUS: dict[ActionType, BetStatus] = {
    ActionType.TRACK: BetStatus.TRACKED,
    ActionType.DISMISS: BetStatus.DISMISSED,
    ActionType.WON: BetStatus.WON,
    ActionType.LOST: BetStatus.LOST,
    ActionType.PUSH: BetStatus.PUSH,
}


def can_transition(current: BetStatus, target: BetStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def should_alert(
    record: Optional[TrackedBet],
    now_ms: int,
    cooldown_ms: int,
    max_tracked_ms: Optional[int] = None,
) -> bool:
    """
    Decide whether an opportunity with this lifecycle record may alert.

    - no record: alert
    - tracked: suppress; with max_tracked_ms set, alert again once the bet
      has been tracked longer than that
    - sent: suppress while inside the cooldown window
    - dismissed: suppress permanently
    - won / lost / push: alert (a settled bet no longer blocks its key)
    """
    if record is None:
        return True

    if record.status == BetStatus.TRACKED:
        if max_tracked_ms is None:
            return False
        return now_ms - record.status_changed_ms > max_tracked_ms

    if record.status == BetStatus.SENT:
        return now_ms - record.first_sent_ms >= cooldown_ms

    if record.status == BetStatus.DISMISSED:
        return False

    return True


class RecentEventSet:
    """
    Bounded insertion-ordered set of processed event ids.

    Once capacity is exceeded the oldest id is evicted.
    """

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._ids: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, event_id: str) -> bool:
        return event_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, event_id: str) -> bool:
        """Remember an id. Returns False if it was already present."""
        if event_id in self._ids:
            return False
        self._ids[event_id] = None
        while len(self._ids) > self.capacity:
            self._ids.popitem(last=False)
        return True


__all__ = [
    "ALLOWED_TRANSITIONS",
    "ACTION_STATUS",
    "RecentEventSet",
    "can_transition",
    "make_bet_key",
    "should_alert",
]
