"""
Base classes for upstream feeds.

Feeds return raw JSON-like records; normalization into the canonical
model happens in engine/parser.py (odds) or in the cache builder
(fixtures). Feeds raise FeedError on upstream failure and never retry
within a refresh cycle.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from evscout.engine.forecast import TeamAverages
from evscout.models.schemas import Sport


@dataclass
class FeedHealth:
    """Health status of an HTTP feed."""
    connected: bool = False
    last_success_ms: int = 0
    request_count: int = 0
    error_count: int = 0

    @property
    def age_ms(self) -> int:
        """Milliseconds since the last successful request."""
        if self.last_success_ms == 0:
            return -1
        return int(time.time() * 1000) - self.last_success_ms

    def record_success(self) -> None:
        self.connected = True
        self.request_count += 1
        self.last_success_ms = int(time.time() * 1000)

    def record_error(self) -> None:
        self.request_count += 1
        self.error_count += 1


class FixtureFeed(ABC):
    """Lists upcoming fixtures."""

    @property
    def is_configured(self) -> bool:
        return True

    @abstractmethod
    async def list_fixtures(self, sport: Sport, league: Optional[str] = None) -> list[dict]:
        """Fixture dicts: {id, start_time, home, away, league}."""


class OddsFeed(ABC):
    """Fetches odds for one fixture from a batch of bookmakers."""

    # Upstream cap on bookmakers per request
    max_bookmakers_per_request: int = 5

    @property
    def is_configured(self) -> bool:
        return True

    @abstractmethod
    async def fetch_odds(self, fixture_id: str, bookmakers: list[str]) -> list[dict]:
        """Raw odds records for the fixture from the given bookmakers."""


class StatsFeed(ABC):
    """Historical team averages for the forecast strategy."""

    @property
    def is_configured(self) -> bool:
        return True

    @abstractmethod
    async def team_averages(
        self,
        team: str,
        window: int = 15,
        league: Optional[str] = None,
    ) -> Optional[TeamAverages]:
        """Per-game averages over the team's last `window` games, or None if unknown."""
