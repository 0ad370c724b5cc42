"""Fakes and factories shared by the test suite."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

from evscout.alerts.storage import BetStore, MemoryBetStore
from evscout.alerts.telegram import Keyboard, MessageChannel
from evscout.engine.forecast import TeamAverages
from evscout.errors import FeedError, PersistenceError
from evscout.feeds.base import FixtureFeed, OddsFeed, StatsFeed
from evscout.models.schemas import (
    BookmakerPrice,
    EstimateMethod,
    Fixture,
    OperatorAction,
    Opportunity,
    Side,
    Sport,
)


# =============================================================================
# Factories
# =============================================================================

def iso_in(hours: float) -> str:
    return (datetime.now(timezone.utc) + timedelta(hours=hours)).isoformat()


def odds_record(
    bookmaker: str,
    side: str,
    price: float,
    line: float = 25.5,
    subject: str = "LeBron James",
    market: str = "player_points",
    player_id: Optional[str] = "p1",
) -> dict:
    """OpticOdds-shaped record; `price` is American."""
    return {
        "sportsbook": bookmaker,
        "market_id": market,
        "name": f"{subject} {side.title()} {line}",
        "selection": subject,
        "selection_line": side,
        "points": line,
        "price": price,
        "player_id": player_id,
    }


def make_fixture(
    fixture_id: str = "f1",
    sport: Sport = Sport.NBA,
    hours_ahead: float = 3.0,
    home: str = "Los Angeles Lakers",
    away: str = "Boston Celtics",
) -> Fixture:
    return Fixture(
        fixture_id=fixture_id,
        sport=sport,
        home=home,
        away=away,
        start_time=datetime.now(timezone.utc) + timedelta(hours=hours_ahead),
    )


def make_opportunity(
    subject: str = "LeBron James",
    ev_percent: float = 10.0,
    price: float = 2.2,
    bookmaker: str = "bet365",
    sport: Sport = Sport.NBA,
    side: Side = Side.OVER,
    line: float = 25.5,
    fixture: Optional[Fixture] = None,
) -> Opportunity:
    fair = (ev_percent / 100 + 1) / price
    return Opportunity(
        sport=sport,
        fixture=fixture or make_fixture(sport=sport),
        subject=subject,
        market="player_points",
        market_display="Points",
        line=line,
        side=side,
        bookmaker=bookmaker,
        bookmaker_display="Bet365",
        price=price,
        ev_percent=ev_percent,
        fair_probability=fair,
        method=EstimateMethod.DEVIG,
        sample_size=3,
        all_bookmakers=[BookmakerPrice(bookmaker, price, ev_percent, "Bet365")],
        is_player_prop=True,
    )


def make_action(
    action,
    bet_key: str,
    event_id: str = "evt-1",
    message_ref: Optional[int] = 100,
    message_text: str = "original alert",
    received_ms: int = 1_000,
) -> OperatorAction:
    return OperatorAction(
        event_id=event_id,
        action=action,
        bet_key=bet_key,
        message_ref=message_ref,
        message_text=message_text,
        received_ms=received_ms,
    )


# =============================================================================
# Fake Feeds
# =============================================================================

class FakeOddsFeed(FixtureFeed, OddsFeed):
    """
    In-memory fixture + odds feed.

    Records are returned for a batch when their "sportsbook" is in it; a
    batch containing any bookmaker in `failing_bookmakers` raises FeedError.
    """

    def __init__(
        self,
        fixtures: Optional[dict] = None,
        odds: Optional[dict] = None,
        failing_bookmakers: Optional[set] = None,
        failing_leagues: Optional[set] = None,
        max_bookmakers_per_request: int = 5,
        gate: Optional[asyncio.Event] = None,
    ):
        self.fixtures = fixtures or {}            # league (or None) -> raw fixture dicts
        self.odds = odds or {}                    # fixture_id -> records
        self.failing_bookmakers = failing_bookmakers or set()
        self.failing_leagues = failing_leagues or set()
        self.max_bookmakers_per_request = max_bookmakers_per_request
        self.gate = gate
        self.configured = True

        self.fixture_calls: list = []
        self.odds_calls: list[tuple[str, list[str]]] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def list_fixtures(self, sport, league=None):
        self.fixture_calls.append((sport, league))
        if self.gate is not None:
            await self.gate.wait()
        if league in self.failing_leagues:
            raise FeedError(f"league {league} unavailable", status=503)
        return list(self.fixtures.get(league, []))

    async def fetch_odds(self, fixture_id, bookmakers):
        self.odds_calls.append((fixture_id, list(bookmakers)))
        if self.failing_bookmakers & set(bookmakers):
            raise FeedError("batch failed", status=500)
        return [r for r in self.odds.get(fixture_id, []) if r["sportsbook"] in bookmakers]


class FakeStatsFeed(StatsFeed):
    def __init__(self, averages: Optional[dict] = None):
        self.averages = averages or {}
        self.calls: list[str] = []

    async def team_averages(self, team, window=15, league=None):
        self.calls.append(team)
        return self.averages.get(team)


def team_averages(team: str, games: int = 10, **rates) -> TeamAverages:
    return TeamAverages(team=team, games=games, rates=rates)


# =============================================================================
# Fake Channel
# =============================================================================

class FakeChannel(MessageChannel):
    """Records every call; behaviour switches for refusals and failures."""

    def __init__(self):
        self.configured = True
        self.allow_delete = True
        self.fail_send = False
        self.ack_error: Optional[Exception] = None
        self.ack_delay = 0.0

        self.sent: list[tuple[int, str, Optional[Keyboard]]] = []
        self.edits: list[tuple[int, str, Optional[Keyboard]]] = []
        self.deletes: list[int] = []
        self.acks: list[tuple[str, str]] = []

        self.poll_results: list = []   # items: (actions, cursor) or an exception
        self._next_id = 100

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def send_message(self, text, buttons=None):
        if self.fail_send:
            return None
        self._next_id += 1
        self.sent.append((self._next_id, text, buttons))
        return self._next_id

    async def edit_message(self, message_ref, text, buttons=None):
        self.edits.append((message_ref, text, buttons))
        return True

    async def delete_message(self, message_ref):
        if not self.allow_delete:
            return False
        self.deletes.append(message_ref)
        return True

    async def acknowledge(self, event_id, text=""):
        if self.ack_delay:
            await asyncio.sleep(self.ack_delay)
        if self.ack_error:
            raise self.ack_error
        self.acks.append((event_id, text))
        return True

    async def poll_actions(self, cursor, timeout):
        if not self.poll_results:
            await asyncio.sleep(0)
            return [], cursor
        result = self.poll_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


# =============================================================================
# Fake Bet Stores
# =============================================================================

class FailingStore(BetStore):
    """Every call raises."""

    async def get(self, key):
        raise PersistenceError("disk gone")

    async def put(self, bet):
        raise PersistenceError("disk gone")

    async def delete(self, key):
        raise PersistenceError("disk gone")

    async def all(self):
        raise PersistenceError("disk gone")


class SlowStore(MemoryBetStore):
    """Memory store that takes `delay` seconds per read and write."""

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def get(self, key):
        await asyncio.sleep(self.delay)
        return await super().get(key)

    async def put(self, bet):
        await asyncio.sleep(self.delay)
        await super().put(bet)
