"""
Proposition Parser / Grouper.

Turns a fixture's raw odds records into typed Propositions and groups them
by (subject, market). Feed-specific field names live in a FeedAdapter so
nothing downstream ever sees a raw record.

OpticOdds record shape (v3 /fixtures/odds):
    {
        "sportsbook": "Unibet DK",
        "market_id": "player_points",
        "market": "Player Points",
        "name": "LeBron James Over 25.5",
        "selection": "LeBron James",
        "selection_line": "over",
        "points": 25.5,
        "price": -110,
        "player_id": "8C3E...",
        "team": "Los Angeles Lakers"
    }
"""

import re
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

import structlog

from evscout.models.schemas import (
    BookQuote,
    OddsFormat,
    Proposition,
    PropositionGroup,
    Side,
    to_decimal,
)

logger = structlog.get_logger()


_SIDE_TOKEN = re.compile(r"\b(over|under|yes|no)\b", re.IGNORECASE)
_TRAILING_NUMBER = re.compile(r"([-+]?\d+(?:\.\d+)?)\s*$")

# Selections that name a side or venue rather than a subject
_GENERIC_SELECTIONS = {"over", "under", "yes", "no", "home", "away", "draw", "match", ""}

MATCH_SUBJECT = "match"


# =============================================================================
# Display Names
# =============================================================================

BOOKMAKER_DISPLAY = {
    "pinnacle": "Pinnacle",
    "bet365": "Bet365",
    "unibet": "Unibet",
    "unibet_denmark_": "Unibet DK",
    "betano": "Betano",
    "draftkings": "DraftKings",
    "fanduel": "FanDuel",
    "betmgm": "BetMGM",
    "caesars": "Caesars",
    "betrivers": "BetRivers",
    "fanatics": "Fanatics",
    "prizepicks": "PrizePicks",
    "fliff": "Fliff",
    "betway": "Betway",
    "bet99": "Bet99",
    "superbet": "Superbet",
    "betsson": "Betsson",
    "betsafe": "Betsafe",
    "888sport": "888sport",
    "william_hill": "William Hill",
    "bovada": "Bovada",
    "betonline": "BetOnline",
    "betfair": "Betfair",
    "bwin": "bwin",
}

MARKET_DISPLAY = {
    # Basketball
    "player_points": "Points",
    "player_assists": "Assists",
    "player_rebounds": "Rebounds",
    "player_made_threes": "3-Pointers",
    "player_steals": "Steals",
    "player_blocks": "Blocks",
    "player_turnovers": "Turnovers",
    "player_points_+_assists": "Pts+Asts",
    "player_points_+_rebounds": "Pts+Rebs",
    "player_rebounds_+_assists": "Rebs+Asts",
    "player_steals_+_blocks": "Steals+Blocks",
    "player_points_+_rebounds_+_assists": "Pts+Rebs+Asts",
    "player_double_double": "Double Double",
    "player_triple_double": "Triple Double",
    # Football
    "total_goals": "Match Total",
    "asian_total_goals": "Asian Total",
    "total_corners": "Corners Total",
    "total_cards": "Cards Total",
    "total_shots_on_target": "Shots on Target",
    "team_total_goals": "Team Total",
    "anytime_goal_scorer": "Anytime Goalscorer",
    "player_shots": "Player Shots",
    "player_shots_on_target": "Player Shots on Target",
    "player_tackles": "Player Tackles",
    "player_cards": "Player Cards",
    "player_passes": "Player Passes",
    "player_fouls": "Player Fouls",
    "player_saves": "Player Saves",
}


def bookmaker_display(bookmaker: str) -> str:
    return BOOKMAKER_DISPLAY.get(bookmaker, bookmaker)


def market_display(market: str) -> str:
    return MARKET_DISPLAY.get(market, market.replace("_", " ").title())


# =============================================================================
# Feed Adapters
# =============================================================================

class FeedAdapter(ABC):
    """Decodes one feed's raw odds records into canonical Propositions."""

    name: str = "feed"
    odds_format: OddsFormat = OddsFormat.DECIMAL

    @abstractmethod
    def normalize(self, record: dict, fixture_id: str) -> Optional[Proposition]:
        """Return a Proposition, or None when the record is unusable."""

    def market_display(self, market: str) -> str:
        return market_display(market)


class OpticOddsAdapter(FeedAdapter):
    """
    Adapter for OpticOdds v3 odds records.

    Prices arrive in American format. Sportsbooks arrive as display labels
    ("Unibet DK") or ids ("unibet_denmark_") depending on the endpoint.
    """

    name = "optic_odds"
    odds_format = OddsFormat.AMERICAN

    SPORTSBOOK_MAP = {
        "Pinnacle": "pinnacle",
        "DraftKings": "draftkings",
        "FanDuel": "fanduel",
        "BetMGM": "betmgm",
        "Caesars": "caesars",
        "BetRivers": "betrivers",
        "Fanatics": "fanatics",
        "PrizePicks": "prizepicks",
        "Fliff": "fliff",
        "Betway": "betway",
        "Bet99": "bet99",
        "bet365": "bet365",
        "Bet365": "bet365",
        "Unibet": "unibet",
        "Unibet DK": "unibet_denmark_",
        "Betano": "betano",
        "William Hill": "william_hill",
    }

    def normalize_bookmaker(self, label: Any) -> Optional[str]:
        if not label:
            return None
        label = str(label).strip()
        return self.SPORTSBOOK_MAP.get(label, label.lower().replace(" ", "_"))

    def normalize(self, record: dict, fixture_id: str) -> Optional[Proposition]:
        bookmaker = self.normalize_bookmaker(record.get("sportsbook"))
        market = record.get("market_id") or record.get("market")
        if not bookmaker or not market:
            return None
        market = str(market).strip().lower().replace(" ", "_")

        label = str(record.get("name") or "").strip()
        selection = str(record.get("selection") or "").strip()

        side = self._decode_side(record, label, selection)
        if side is None:
            return None

        price = to_decimal(record.get("price"), self.odds_format)
        if price is None:
            return None

        line = self._decode_line(record, label, side)
        if line is None:
            return None

        player_id = record.get("player_id")
        subject = self._decode_subject(record, label, selection, player_id)

        return Proposition(
            fixture_id=fixture_id,
            subject=subject,
            market=market,
            line=line,
            side=side,
            bookmaker=bookmaker,
            price=price,
            player_id=str(player_id) if player_id else None,
        )

    # --- Field decoding ---

    def _decode_side(self, record: dict, label: str, selection: str) -> Optional[Side]:
        selection_line = str(record.get("selection_line") or "").strip().lower()
        if selection_line in ("over", "under", "yes", "no"):
            return Side(selection_line)

        for text in (label, selection):
            match = _SIDE_TOKEN.search(text)
            if match:
                return Side(match.group(1).lower())
        return None

    def _decode_line(self, record: dict, label: str, side: Side) -> Optional[float]:
        for candidate in (record.get("points"), record.get("line")):
            if candidate is None or candidate == "":
                continue
            try:
                return float(candidate)
            except (TypeError, ValueError):
                continue

        match = _TRAILING_NUMBER.search(label)
        if match:
            return float(match.group(1))

        # Yes/no markets (double double, anytime scorer) have no printed line
        if side in (Side.YES, Side.NO):
            return 0.5
        return None

    def _decode_subject(
        self,
        record: dict,
        label: str,
        selection: str,
        player_id: Any,
    ) -> str:
        prefix = self._label_prefix(label)

        if player_id:
            for candidate in (record.get("player"), prefix, selection):
                if candidate and str(candidate).strip().lower() not in _GENERIC_SELECTIONS:
                    return str(candidate).strip()

        # Team props: selection carries the team, label is "Team Over 1.5"
        if selection.lower() not in _GENERIC_SELECTIONS and not _SIDE_TOKEN.search(selection):
            return selection
        if prefix and prefix.lower() not in _GENERIC_SELECTIONS:
            return prefix

        team = record.get("team")
        if team and str(team).strip():
            return str(team).strip()

        return MATCH_SUBJECT

    @staticmethod
    def _label_prefix(label: str) -> str:
        match = _SIDE_TOKEN.search(label)
        if not match:
            return ""
        return label[:match.start()].strip()


# =============================================================================
# Parsing & Grouping
# =============================================================================

def parse_propositions(
    records: Iterable[dict],
    adapter: FeedAdapter,
    fixture_id: str,
    market_filter: Optional[str] = None,
) -> list[Proposition]:
    """
    Normalize raw odds records into deduplicated Propositions.

    Records for the same (subject, market, line, bookmaker, side) collapse
    into one; the most recently seen price wins.

    Args:
        records: Raw odds records for one fixture
        adapter: Feed adapter for the records' source
        fixture_id: Fixture the records belong to
        market_filter: Optional substring a market id must contain
            (e.g. "player_" for player props only)
    """
    propositions: dict[tuple, Proposition] = {}
    dropped = 0

    for record in records:
        if not isinstance(record, dict):
            dropped += 1
            continue
        prop = adapter.normalize(record, fixture_id)
        if prop is None:
            dropped += 1
            continue
        if market_filter and market_filter not in prop.market:
            continue
        # Re-insert so dict order tracks the latest sighting
        propositions.pop(prop.dedupe_key, None)
        propositions[prop.dedupe_key] = prop

    if dropped:
        logger.debug(
            "Dropped unusable odds records",
            feed=adapter.name,
            fixture_id=fixture_id,
            dropped=dropped,
        )

    return list(propositions.values())


def group_propositions(
    propositions: Iterable[Proposition],
    adapter: Optional[FeedAdapter] = None,
) -> list[PropositionGroup]:
    """Group Propositions by (subject, market), one BookQuote per (bookmaker, line)."""
    groups: dict[tuple[str, str], PropositionGroup] = {}
    quotes: dict[tuple, BookQuote] = {}

    for prop in propositions:
        group = groups.get(prop.group_key)
        if group is None:
            group = PropositionGroup(
                subject=prop.subject,
                market=prop.market,
                market_display=adapter.market_display(prop.market) if adapter else market_display(prop.market),
                player_id=prop.player_id,
            )
            groups[prop.group_key] = group

        quote_key = (prop.subject, prop.market, prop.bookmaker, prop.line)
        quote = quotes.get(quote_key)
        if quote is None:
            quote = BookQuote(bookmaker=prop.bookmaker, line=prop.line)
            quotes[quote_key] = quote
            group.quotes.append(quote)
        quote.prices[prop.side] = prop.price

    return list(groups.values())
