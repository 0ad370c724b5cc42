"""
football-data.org Stats Feed.

Recent-form team averages for the forecast strategy.

API Docs: https://www.football-data.org/documentation/api

Free tier: 10 requests/minute, so requests are spaced ~6.5s apart and team
averages are cached for 6 hours. The free tier has no corner or shot data;
those are estimated from scoring rate the same way for every team.
"""

import asyncio
import re
import ssl
import time
import unicodedata
from dataclasses import dataclass, field
from typing import Optional

import certifi
import httpx
import structlog

from evscout.engine.forecast import TeamAverages
from evscout.errors import FeedError
from evscout.feeds.base import FeedHealth, StatsFeed

logger = structlog.get_logger()


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class FootballDataConfig:
    """Configuration for football-data.org."""
    api_key: str
    base_url: str = "https://api.football-data.org/v4"
    timeout: float = 15.0
    request_spacing: float = 6.5       # Seconds between requests (free tier)
    cache_ttl_seconds: float = 6 * 3600

    # OpticOdds league id -> football-data.org competition code
    competitions: dict[str, str] = field(default_factory=lambda: {
        "england_-_premier_league": "PL",
        "spain_-_la_liga": "PD",
        "germany_-_bundesliga": "BL1",
        "italy_-_serie_a": "SA",
        "france_-_ligue_1": "FL1",
    })
    default_competition: str = "PL"


# Tokens that differ between feeds for the same club
_CLUB_TOKENS = {"fc", "afc", "cf", "sc", "ac", "ssc", "as", "cd", "ud", "rc", "vfb", "vfl", "tsg", "1."}


def normalize_team_name(name: str) -> str:
    """
    Canonical team name for cross-feed matching.

    "Manchester United FC" -> "manchester united"
    "Atlético de Madrid" -> "atletico de madrid"
    """
    text = unicodedata.normalize("NFKD", name)
    text = "".join(c for c in text if not unicodedata.combining(c)).lower()
    text = re.sub(r"[^\w\s.&]", " ", text)
    tokens = [t for t in text.split() if t not in _CLUB_TOKENS]
    return " ".join(tokens).strip()


def match_team(name: str, teams: list[dict]) -> Optional[dict]:
    """Find the team record best matching a name (exact, short name/TLA, then containment)."""
    target = normalize_team_name(name)
    if not target:
        return None

    for team in teams:
        if normalize_team_name(team.get("name", "")) == target:
            return team

    for team in teams:
        short = normalize_team_name(team.get("shortName") or "")
        tla = (team.get("tla") or "").lower()
        if target in (short, tla):
            return team

    for team in teams:
        candidate = normalize_team_name(team.get("name", ""))
        if candidate and (target in candidate or candidate in target):
            return team

    return None


def estimate_corners(goals_per_game: float, league_avg_goals: float = 1.35) -> float:
    """Corners per game from attacking strength (clamped 3-8)."""
    attacking_strength = goals_per_game / league_avg_goals
    return max(3.0, min(8.0, 5.5 * (0.7 + 0.3 * attacking_strength)))


def estimate_shots_on_target(goals_per_game: float) -> float:
    """Shots on target per game assuming ~30% conversion (clamped 2-8)."""
    return max(2.0, min(8.0, goals_per_game / 0.30))


# =============================================================================
# Feed Implementation
# =============================================================================

class FootballDataStatsFeed(StatsFeed):
    """
    Team averages from football-data.org finished matches.

    Usage:
        feed = FootballDataStatsFeed(FootballDataConfig(api_key="your_key"))
        stats = await feed.team_averages("Arsenal", window=15, league="england_-_premier_league")
    """

    def __init__(self, config: FootballDataConfig):
        self.config = config
        self.logger = logger.bind(feed="football_data")

        self._http_client: Optional[httpx.AsyncClient] = None
        self._request_lock = asyncio.Lock()
        self._last_request_time: float = 0

        # Caches
        self._teams: dict[str, list[dict]] = {}  # competition -> teams
        self._averages: dict[tuple[str, str, int], tuple[float, TeamAverages]] = {}

        self.health = FeedHealth()

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_key)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _request(self, endpoint: str, params: Optional[dict] = None) -> dict:
        """Rate-limited GET. Raises FeedError on any failure."""
        if not self.is_configured:
            raise FeedError("FOOTBALL_DATA_API_KEY not configured")

        # Serialize requests so the spacing holds across concurrent callers
        async with self._request_lock:
            wait = self.config.request_spacing - (time.time() - self._last_request_time)
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request_time = time.time()

            if self._http_client is None:
                ssl_context = ssl.create_default_context(cafile=certifi.where())
                self._http_client = httpx.AsyncClient(
                    verify=ssl_context,
                    timeout=self.config.timeout,
                    headers={"X-Auth-Token": self.config.api_key},
                )

            try:
                response = await self._http_client.get(f"{self.config.base_url}{endpoint}", params=params)
            except httpx.HTTPError as e:
                self.health.record_error()
                raise FeedError(f"Request to {endpoint} failed: {type(e).__name__}: {e}") from e

        if response.status_code != 200:
            self.health.record_error()
            if response.status_code == 429:
                self.logger.warning("Rate limited by football-data.org", endpoint=endpoint)
            raise FeedError(f"{endpoint} returned {response.status_code}", status=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            self.health.record_error()
            raise FeedError(f"Invalid JSON from {endpoint}") from e
        self.health.record_success()
        return data

    async def _competition_teams(self, competition: str) -> list[dict]:
        if competition not in self._teams:
            data = await self._request(f"/competitions/{competition}/teams")
            self._teams[competition] = data.get("teams") or []
        return self._teams[competition]

    async def team_averages(
        self,
        team: str,
        window: int = 15,
        league: Optional[str] = None,
    ) -> Optional[TeamAverages]:
        competition = self.config.competitions.get(league or "", self.config.default_competition)
        cache_key = (competition, normalize_team_name(team), window)

        cached = self._averages.get(cache_key)
        if cached and time.time() - cached[0] < self.config.cache_ttl_seconds:
            return cached[1]

        record = match_team(team, await self._competition_teams(competition))
        if record is None:
            self.logger.warning("Team not found", team=team, competition=competition)
            return None

        data = await self._request(
            f"/teams/{record['id']}/matches",
            {"status": "FINISHED", "limit": window},
        )
        matches = sorted(data.get("matches") or [], key=lambda m: m.get("utcDate", ""), reverse=True)
        averages = self.compute_averages(team, record["id"], matches[:window])

        if averages is not None:
            self._averages[cache_key] = (time.time(), averages)
        return averages

    @staticmethod
    def compute_averages(team: str, team_id: int, matches: list[dict]) -> Optional[TeamAverages]:
        """Per-game averages from finished matches (overall and per venue)."""
        totals = {
            "home": {"games": 0, "scored": 0, "conceded": 0, "yellow": 0},
            "away": {"games": 0, "scored": 0, "conceded": 0, "yellow": 0},
        }
        bookings_seen = False

        for match in matches:
            score = (match.get("score") or {}).get("fullTime") or {}
            if score.get("home") is None or score.get("away") is None:
                continue
            is_home = (match.get("homeTeam") or {}).get("id") == team_id
            venue = "home" if is_home else "away"

            bucket = totals[venue]
            bucket["games"] += 1
            bucket["scored"] += score["home"] if is_home else score["away"]
            bucket["conceded"] += score["away"] if is_home else score["home"]

            bookings = match.get("bookings")
            if bookings:
                bookings_seen = True
                bucket["yellow"] += sum(
                    1 for b in bookings
                    if (b.get("team") or {}).get("id") == team_id and b.get("card") == "YELLOW_CARD"
                )

        games = totals["home"]["games"] + totals["away"]["games"]
        if games == 0:
            return None

        rates: dict[str, float] = {
            "goals": (totals["home"]["scored"] + totals["away"]["scored"]) / games,
            "goals_conceded": (totals["home"]["conceded"] + totals["away"]["conceded"]) / games,
        }
        for venue, bucket in totals.items():
            if bucket["games"]:
                rates[f"goals_{venue}"] = bucket["scored"] / bucket["games"]
                rates[f"goals_conceded_{venue}"] = bucket["conceded"] / bucket["games"]
                if bookings_seen:
                    rates[f"yellow_cards_{venue}"] = bucket["yellow"] / bucket["games"]

        for venue in ("home", "away"):
            scoring = rates.get(f"goals_{venue}", rates["goals"])
            rates[f"corners_{venue}"] = estimate_corners(scoring)
            rates[f"shots_on_target_{venue}"] = estimate_shots_on_target(scoring)

        return TeamAverages(team=team, games=games, rates=rates)

    def get_metrics(self) -> dict:
        """Get feed health metrics."""
        return {
            "connected": self.health.connected,
            "requests": self.health.request_count,
            "errors": self.health.error_count,
            "cached_teams": len(self._averages),
        }
