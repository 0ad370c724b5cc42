"""
Value bet data models and schemas.

Defines the core data structures for:
- Sports, sides and odds formats (with conversions)
- Fixtures, propositions and per-bookmaker quotes
- Fair probabilities and EV opportunities
- Per-sport cache snapshots and refresh progress
- Tracked bets and operator actions for the alert lifecycle
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
import hashlib
import math
import re
import time


class Sport(str, Enum):
    """Supported sports."""
    NBA = "nba"
    FOOTBALL = "football"

    @classmethod
    def from_string(cls, value: str) -> Optional["Sport"]:
        """Convert string to Sport enum."""
        value_lower = value.strip().lower()
        for sport in cls:
            if sport.value == value_lower or sport.name.lower() == value_lower:
                return sport
        return None

    @property
    def emoji(self) -> str:
        return "🏀" if self is Sport.NBA else "⚽"


class Side(str, Enum):
    """Bet side of a proposition."""
    OVER = "over"
    UNDER = "under"
    YES = "yes"
    NO = "no"

    @property
    def opposite(self) -> "Side":
        return _OPPOSITE_SIDE[self]

    @property
    def label(self) -> str:
        return self.value.upper()


_OPPOSITE_SIDE = {
    Side.OVER: Side.UNDER,
    Side.UNDER: Side.OVER,
    Side.YES: Side.NO,
    Side.NO: Side.YES,
}


class OddsFormat(Enum):
    """Odds format types."""
    AMERICAN = "american"      # +150, -200
    DECIMAL = "decimal"        # 2.50, 1.50


# =============================================================================
# Odds Conversions
# =============================================================================

def american_to_decimal(american: float) -> Optional[float]:
    """
    Convert American odds to Decimal.

    American 0 is how some feeds encode "no price"; it has no decimal
    equivalent and returns None.
    """
    if american > 0:
        return (american / 100) + 1
    if american < 0:
        return (100 / abs(american)) + 1
    return None


def decimal_to_american(decimal: float) -> float:
    """Convert Decimal odds (> 1.0) to American."""
    if decimal >= 2.0:
        return (decimal - 1) * 100
    return -100 / (decimal - 1)


def implied_probability(decimal: float) -> float:
    """Convert Decimal odds to implied probability (includes vig)."""
    if decimal <= 0:
        return 0.0
    return 1 / decimal


def to_decimal(price: Any, fmt: OddsFormat) -> Optional[float]:
    """
    Decode a feed-native price into decimal odds.

    Returns None for anything that is not a usable price: missing values,
    non-numeric strings, American 0, or decimal odds <= 1.0.
    """
    if price is None or isinstance(price, bool):
        return None
    try:
        value = float(price)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value):
        return None

    if fmt == OddsFormat.AMERICAN:
        decimal = american_to_decimal(value)
    else:
        decimal = value

    if decimal is None or decimal <= 1.0:
        return None
    return decimal


def line_key(line: float) -> float:
    """Round a line to the nearest 0.5, halves rounding up (23.25 -> 23.5)."""
    return math.floor(line * 2 + 0.5) / 2


# =============================================================================
# Fixtures & Propositions
# =============================================================================

@dataclass
class Fixture:
    """A single game/match from the fixture feed."""
    fixture_id: str
    sport: Sport
    home: str
    away: str
    start_time: datetime
    league: str = ""

    @property
    def name(self) -> str:
        """Human-readable fixture name."""
        if self.sport == Sport.NBA:
            return f"{self.away} @ {self.home}"
        return f"{self.home} vs {self.away}"

    def hours_until(self, now: Optional[datetime] = None) -> float:
        """Hours until kick-off/tip-off (negative once started)."""
        now = now or datetime.now(timezone.utc)
        return (self.start_time - now).total_seconds() / 3600

    def to_dict(self) -> dict:
        return {
            "fixture_id": self.fixture_id,
            "sport": self.sport.value,
            "home": self.home,
            "away": self.away,
            "start_time": self.start_time.isoformat(),
            "league": self.league,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Fixture":
        return cls(
            fixture_id=data["fixture_id"],
            sport=Sport(data["sport"]),
            home=data["home"],
            away=data["away"],
            start_time=datetime.fromisoformat(data["start_time"]),
            league=data.get("league", ""),
        )


@dataclass
class Proposition:
    """
    A single bettable line at one bookmaker.

    Example: "LeBron James" / player_points / 25.5 / over @ bet365 1.91
    """
    fixture_id: str
    subject: str          # Player name, team name, or "match"
    market: str           # Feed market id, e.g. "player_points", "total_goals"
    line: float
    side: Side
    bookmaker: str        # Normalized bookmaker id, e.g. "unibet_denmark_"
    price: float          # Decimal odds, always > 1.0
    player_id: Optional[str] = None

    @property
    def group_key(self) -> tuple[str, str]:
        return (self.subject, self.market)

    @property
    def dedupe_key(self) -> tuple:
        return (self.subject, self.market, self.line, self.bookmaker, self.side)


@dataclass
class BookQuote:
    """One bookmaker's prices at one line for a (subject, market)."""
    bookmaker: str
    line: float
    prices: dict[Side, float] = field(default_factory=dict)

    def price(self, side: Side) -> Optional[float]:
        return self.prices.get(side)

    def pair(self, side: Side) -> Optional[tuple[float, float]]:
        """
        Two-sided prices as (side, opposite side).

        None unless both sides are quoted; a one-sided quote cannot be
        de-vigged.
        """
        own = self.prices.get(side)
        other = self.prices.get(side.opposite)
        if own is None or other is None:
            return None
        return own, other


@dataclass
class PropositionGroup:
    """
    All quotes for one (subject, market), across bookmakers and lines.

    Lines are bucketed to the nearest 0.5 when the evaluator walks the
    playable side; reference quotes are matched by line tolerance instead.
    """
    subject: str
    market: str
    market_display: str = ""
    quotes: list[BookQuote] = field(default_factory=list)
    player_id: Optional[str] = None

    @property
    def is_match_level(self) -> bool:
        return self.subject == "match"

    @property
    def is_player_prop(self) -> bool:
        return self.player_id is not None or self.market.startswith("player_")

    def line_buckets(self, bookmakers: Optional[set[str]] = None) -> dict[float, list[BookQuote]]:
        """Quotes keyed by rounded line, optionally limited to some bookmakers."""
        buckets: dict[float, list[BookQuote]] = {}
        for quote in self.quotes:
            if bookmakers is not None and quote.bookmaker not in bookmakers:
                continue
            buckets.setdefault(line_key(quote.line), []).append(quote)
        return buckets


@dataclass(frozen=True)
class BookmakerPartition:
    """
    Splits bookmakers into playable (we bet there) and reference (pricing only).

    When no explicit reference list is given, every non-playable bookmaker is
    a reference book. A bookmaker is never both.
    """
    playable: frozenset[str]
    reference: Optional[frozenset[str]] = None

    def __post_init__(self):
        if self.reference is not None:
            overlap = self.playable & self.reference
            if overlap:
                raise ValueError(
                    f"Bookmakers cannot be both playable and reference: {sorted(overlap)}"
                )

    @classmethod
    def of(cls, playable, reference=None) -> "BookmakerPartition":
        return cls(
            playable=frozenset(playable),
            reference=frozenset(reference) if reference else None,
        )

    def is_playable(self, bookmaker: str) -> bool:
        return bookmaker in self.playable

    def is_reference(self, bookmaker: str) -> bool:
        if bookmaker in self.playable:
            return False
        if self.reference is None:
            return True
        return bookmaker in self.reference


# =============================================================================
# Probabilities & Opportunities
# =============================================================================

class EstimateMethod(str, Enum):
    """How a fair probability was derived."""
    DEVIG = "devig"
    FORECAST = "forecast"


@dataclass
class FairProbability:
    """
    Model-based probability for one side of a proposition.

    sample_size is the number of reference books for de-vig, or the number
    of games analysed for a forecast.
    """
    subject: str
    market: str
    line: float
    side: Side
    probability: float
    method: EstimateMethod
    sample_size: int
    confidence: Optional[str] = None  # Forecasts only: high / medium / low
    expected: Optional[float] = None  # Forecasts only: lambda or mu

    @property
    def fair_odds(self) -> float:
        return 1 / self.probability if self.probability > 0 else float("inf")


@dataclass
class BookmakerPrice:
    """A playable bookmaker's price that cleared the EV threshold."""
    bookmaker: str
    price: float
    ev_percent: float
    display_name: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Opportunity:
    """
    A +EV bet: fair probability vs the best playable price.

    Rebuilt from scratch on every refresh cycle.
    """
    sport: Sport
    fixture: Fixture
    subject: str
    market: str
    line: float
    side: Side
    bookmaker: str
    price: float
    ev_percent: float
    fair_probability: float
    method: EstimateMethod
    sample_size: int
    all_bookmakers: list[BookmakerPrice] = field(default_factory=list)
    market_display: str = ""
    bookmaker_display: str = ""
    is_player_prop: bool = False
    confidence: Optional[str] = None
    detected_at_ms: int = field(default_factory=lambda: int(time.time() * 1000))

    @property
    def fair_odds(self) -> float:
        return 1 / self.fair_probability

    @property
    def kelly_fraction(self) -> float:
        return calculate_kelly_fraction(self.fair_probability, self.price)

    @property
    def bet_key(self) -> str:
        return make_bet_key(
            self.fixture.fixture_id,
            self.subject,
            self.market,
            self.line,
            self.side,
            self.bookmaker,
        )

    def to_dict(self) -> dict:
        return {
            "sport": self.sport.value,
            "fixture": self.fixture.to_dict(),
            "subject": self.subject,
            "market": self.market,
            "market_display": self.market_display,
            "line": self.line,
            "side": self.side.value,
            "bookmaker": self.bookmaker,
            "bookmaker_display": self.bookmaker_display,
            "price": self.price,
            "ev_percent": self.ev_percent,
            "fair_probability": self.fair_probability,
            "fair_odds": self.fair_odds,
            "method": self.method.value,
            "sample_size": self.sample_size,
            "confidence": self.confidence,
            "is_player_prop": self.is_player_prop,
            "all_bookmakers": [b.to_dict() for b in self.all_bookmakers],
            "detected_at_ms": self.detected_at_ms,
            "bet_key": self.bet_key,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Opportunity":
        return cls(
            sport=Sport(data["sport"]),
            fixture=Fixture.from_dict(data["fixture"]),
            subject=data["subject"],
            market=data["market"],
            line=data["line"],
            side=Side(data["side"]),
            bookmaker=data["bookmaker"],
            price=data["price"],
            ev_percent=data["ev_percent"],
            fair_probability=data["fair_probability"],
            method=EstimateMethod(data["method"]),
            sample_size=data["sample_size"],
            all_bookmakers=[BookmakerPrice(**b) for b in data.get("all_bookmakers", [])],
            market_display=data.get("market_display", ""),
            bookmaker_display=data.get("bookmaker_display", ""),
            is_player_prop=data.get("is_player_prop", False),
            confidence=data.get("confidence"),
            detected_at_ms=data.get("detected_at_ms", 0),
        )


# =============================================================================
# Cache Snapshots
# =============================================================================

class RefreshState(str, Enum):
    """Per-sport refresh state."""
    IDLE = "idle"
    REFRESHING = "refreshing"
    ERROR = "error"


@dataclass(frozen=True)
class RefreshProgress:
    """Progress of an in-flight refresh cycle."""
    current: int
    total: int
    step: str
    message: str
    percent: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FixtureResult:
    """A fixture with the opportunities found for it in one cycle."""
    fixture: Fixture
    opportunities: list[Opportunity] = field(default_factory=list)
    propositions: int = 0

    def to_dict(self) -> dict:
        return {
            "fixture": self.fixture.to_dict(),
            "opportunities": [o.to_dict() for o in self.opportunities],
            "propositions": self.propositions,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FixtureResult":
        return cls(
            fixture=Fixture.from_dict(data["fixture"]),
            opportunities=[Opportunity.from_dict(o) for o in data.get("opportunities", [])],
            propositions=data.get("propositions", 0),
        )


@dataclass(frozen=True)
class CacheSnapshot:
    """
    Everything cached for one sport, replaced as a whole.

    Readers hold a reference to one snapshot; state, progress and odds in
    that object always belong together.
    """
    sport: Sport
    fixtures: tuple[FixtureResult, ...] = ()
    opportunities: tuple[Opportunity, ...] = ()
    state: RefreshState = RefreshState.IDLE
    last_updated_ms: Optional[int] = None
    error: Optional[str] = None
    progress: Optional[RefreshProgress] = None
    duration_seconds: Optional[float] = None

    @property
    def is_refreshing(self) -> bool:
        return self.state == RefreshState.REFRESHING

    def status(self) -> dict:
        return {
            "sport": self.sport.value,
            "state": self.state.value,
            "last_updated_ms": self.last_updated_ms,
            "is_refreshing": self.is_refreshing,
            "error": self.error,
            "progress": self.progress.to_dict() if self.progress else None,
            "fixtures": len(self.fixtures),
            "opportunities": len(self.opportunities),
        }

    def to_dict(self) -> dict:
        return {
            "sport": self.sport.value,
            "fixtures": [f.to_dict() for f in self.fixtures],
            "opportunities": [o.to_dict() for o in self.opportunities],
            "state": self.state.value,
            "last_updated_ms": self.last_updated_ms,
            "error": self.error,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CacheSnapshot":
        # Persisted snapshots come back idle; a refresh in flight at save time is gone.
        return cls(
            sport=Sport(data["sport"]),
            fixtures=tuple(FixtureResult.from_dict(f) for f in data.get("fixtures", [])),
            opportunities=tuple(Opportunity.from_dict(o) for o in data.get("opportunities", [])),
            state=RefreshState.IDLE,
            last_updated_ms=data.get("last_updated_ms"),
            error=data.get("error"),
            duration_seconds=data.get("duration_seconds"),
        )


# =============================================================================
# Alert Lifecycle
# =============================================================================

class BetStatus(str, Enum):
    """Lifecycle status of an alerted bet."""
    SENT = "sent"
    TRACKED = "tracked"
    DISMISSED = "dismissed"
    WON = "won"
    LOST = "lost"
    PUSH = "push"

    @property
    def is_terminal(self) -> bool:
        return self in (BetStatus.DISMISSED, BetStatus.WON, BetStatus.LOST, BetStatus.PUSH)


class ActionType(str, Enum):
    """Operator button presses."""
    TRACK = "track"
    DISMISS = "dismiss"
    WON = "won"
    LOST = "lost"
    PUSH = "push"

    @property
    def is_result(self) -> bool:
        return self in (ActionType.WON, ActionType.LOST, ActionType.PUSH)


@dataclass
class TrackedBet:
    """Durable lifecycle record for one alerted bet."""
    key: str
    status: BetStatus
    first_sent_ms: int
    status_changed_ms: int
    sport: Sport
    ev_percent: float
    message_ref: Optional[int] = None
    opportunity: dict = field(default_factory=dict)
    history: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "status": self.status.value,
            "first_sent_ms": self.first_sent_ms,
            "status_changed_ms": self.status_changed_ms,
            "sport": self.sport.value,
            "ev_percent": self.ev_percent,
            "message_ref": self.message_ref,
            "opportunity": self.opportunity,
            "history": self.history,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TrackedBet":
        return cls(
            key=data["key"],
            status=BetStatus(data["status"]),
            first_sent_ms=data["first_sent_ms"],
            status_changed_ms=data.get("status_changed_ms", data["first_sent_ms"]),
            sport=Sport(data["sport"]),
            ev_percent=data.get("ev_percent", 0.0),
            message_ref=data.get("message_ref"),
            opportunity=data.get("opportunity", {}),
            history=data.get("history", []),
        )


@dataclass
class OperatorAction:
    """A button press delivered by the messaging platform."""
    event_id: str
    action: ActionType
    bet_key: str
    message_ref: Optional[int] = None
    message_text: str = ""
    received_ms: int = field(default_factory=lambda: int(time.time() * 1000))


# =============================================================================
# Utility Functions
# =============================================================================

_WHITESPACE = re.compile(r"\s+")


def normalize_label(value: str) -> str:
    """Case-fold and collapse whitespace so near-duplicate labels compare equal."""
    return _WHITESPACE.sub(" ", str(value)).strip().casefold()


def make_bet_key(
    fixture_id: str,
    subject: str,
    market: str,
    line: float,
    side: Side,
    bookmaker: str,
) -> str:
    """
    Deterministic bet key for dedup and lifecycle tracking.

    The canonical form is hashed so the key fits inside Telegram's 64-byte
    callback data together with the action prefix.
    """
    side_value = side.value if isinstance(side, Side) else normalize_label(side)
    canonical = "|".join([
        normalize_label(fixture_id),
        normalize_label(subject),
        normalize_label(market),
        f"{float(line):g}",
        side_value,
        normalize_label(bookmaker),
    ])
    return hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:24]


def calculate_kelly_fraction(
    win_prob: float,
    odds_decimal: float,
    fraction: float = 0.25,  # Quarter Kelly for safety
    cap: float = 0.05,
) -> float:
    """
    Calculate Kelly Criterion bet size.

    Args:
        win_prob: True probability of winning
        odds_decimal: Decimal odds offered
        fraction: Kelly fraction (0.25 = quarter Kelly)
        cap: Maximum stake as fraction of bankroll

    Returns:
        Recommended bet as fraction of bankroll
    """
    # Kelly: f = (bp - q) / b
    # where b = decimal odds - 1, p = win prob, q = 1 - p
    b = odds_decimal - 1
    p = win_prob
    q = 1 - p

    kelly = (b * p - q) / b if b > 0 else 0

    return max(0.0, min(cap, kelly * fraction))
