"""
OpticOdds Feed.

Fixtures and odds for NBA and European football from 100+ sportsbooks,
including player props.

API Docs: https://developer.opticodds.com/reference

Key endpoints:
- /fixtures/active?league=nba: In-play and upcoming NBA fixtures
- /fixtures?sport=soccer&league=...&status=unplayed: Upcoming football fixtures
- /fixtures/odds?fixture_id=...&sportsbook=a&sportsbook=b: Odds for one fixture

The odds endpoint caps sportsbooks per request at 5, so callers batch.
"""

import asyncio
import ssl
import time
from dataclasses import dataclass
from typing import Optional

import certifi
import httpx
import structlog

from evscout.errors import FeedError
from evscout.feeds.base import FeedHealth, FixtureFeed, OddsFeed
from evscout.models.schemas import Sport

logger = structlog.get_logger()


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class OpticOddsConfig:
    """Configuration for the OpticOdds API."""
    api_key: str
    base_url: str = "https://api.opticodds.com/api/v3"
    timeout: float = 15.0

    # Rate limiting
    requests_per_minute: int = 120
    max_bookmakers_per_request: int = 5


# =============================================================================
# Feed Implementation
# =============================================================================

class OpticOddsFeed(FixtureFeed, OddsFeed):
    """
    OpticOdds REST client.

    Returns fixtures as {id, start_time, home, away, league} dicts and odds
    as the raw record list; OpticOddsAdapter decodes the odds.

    Usage:
        feed = OpticOddsFeed(OpticOddsConfig(api_key="your_key"))
        fixtures = await feed.list_fixtures(Sport.NBA)
        odds = await feed.fetch_odds(fixtures[0]["id"], ["pinnacle", "bet365"])
        await feed.close()
    """

    def __init__(self, config: OpticOddsConfig):
        self.config = config
        self.max_bookmakers_per_request = config.max_bookmakers_per_request
        self.logger = logger.bind(feed="optic_odds")

        self._http_client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

        # Rate limiting
        self._request_timestamps: list[float] = []

        self.health = FeedHealth()

    @property
    def is_configured(self) -> bool:
        return bool(self.config.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        async with self._client_lock:
            if self._http_client is None:
                ssl_context = ssl.create_default_context(cafile=certifi.where())
                self._http_client = httpx.AsyncClient(
                    verify=ssl_context,
                    timeout=self.config.timeout,
                    headers={
                        "Accept": "application/json",
                        "x-api-key": self.config.api_key,
                    },
                )
            return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    # =========================================================================
    # Rate Limiting
    # =========================================================================

    async def _wait_for_rate_limit(self) -> None:
        """Wait if we're hitting rate limits."""
        now = time.time()

        # Clean old timestamps (older than 1 minute)
        self._request_timestamps = [
            ts for ts in self._request_timestamps
            if now - ts < 60
        ]

        if len(self._request_timestamps) >= self.config.requests_per_minute:
            wait_time = 60 - (now - self._request_timestamps[0])
            if wait_time > 0:
                self.logger.debug("Rate limit reached, waiting", seconds=round(wait_time, 1))
                await asyncio.sleep(wait_time)

        self._request_timestamps.append(time.time())

    # =========================================================================
    # API Calls
    # =========================================================================

    async def _make_request(self, endpoint: str, params: Optional[list[tuple[str, str]]] = None) -> dict:
        """
        Make an API request with rate limiting.

        Raises:
            FeedError: on transport failure, non-200 status or a non-JSON body
        """
        if not self.is_configured:
            raise FeedError("OPTIC_ODDS_API_KEY not configured")

        await self._wait_for_rate_limit()
        client = await self._get_client()
        url = f"{self.config.base_url}{endpoint}"

        try:
            response = await client.get(url, params=params)
        except httpx.HTTPError as e:
            self.health.record_error()
            raise FeedError(f"Request to {endpoint} failed: {type(e).__name__}: {e}") from e

        if response.status_code == 200:
            try:
                data = response.json()
            except ValueError as e:
                self.health.record_error()
                raise FeedError(f"Invalid JSON from {endpoint}") from e
            self.health.record_success()
            return data if isinstance(data, dict) else {"data": data}

        self.health.record_error()
        if response.status_code == 401:
            self.logger.error("Invalid API key")
        elif response.status_code == 429:
            self.logger.warning("Rate limited by API", endpoint=endpoint)
        else:
            self.logger.warning(
                "API error",
                endpoint=endpoint,
                status=response.status_code,
                body=response.text[:200],
            )
        raise FeedError(f"{endpoint} returned {response.status_code}", status=response.status_code)

    async def list_fixtures(self, sport: Sport, league: Optional[str] = None) -> list[dict]:
        """
        Get upcoming fixtures.

        Args:
            sport: NBA or football
            league: OpticOdds league id (football only, e.g. "england_-_premier_league")

        Returns:
            List of {id, start_time, home, away, league} dicts
        """
        if sport == Sport.NBA:
            data = await self._make_request("/fixtures/active", [("league", league or "nba")])
        else:
            params = [("sport", "soccer"), ("status", "unplayed")]
            if league:
                params.append(("league", league))
            data = await self._make_request("/fixtures", params)

        fixtures = []
        for raw in data.get("data") or []:
            fixture = self._parse_fixture(raw, league)
            if fixture:
                fixtures.append(fixture)

        self.logger.debug("Fetched fixtures", sport=sport.value, league=league, count=len(fixtures))
        return fixtures

    def _parse_fixture(self, raw: dict, league: Optional[str]) -> Optional[dict]:
        fixture_id = raw.get("id")
        start_time = raw.get("start_date")
        if not fixture_id or not start_time:
            return None

        def competitor(key: str) -> Optional[str]:
            competitors = raw.get(key) or []
            if competitors and isinstance(competitors[0], dict):
                return competitors[0].get("name")
            return None

        league_info = raw.get("league")
        league_id = league_info.get("id") if isinstance(league_info, dict) else league_info

        return {
            "id": str(fixture_id),
            "start_time": start_time,
            "home": raw.get("home_team_display") or competitor("home_competitors") or "Home",
            "away": raw.get("away_team_display") or competitor("away_competitors") or "Away",
            "league": league or league_id or "",
        }

    async def fetch_odds(self, fixture_id: str, bookmakers: list[str]) -> list[dict]:
        """
        Get odds for a fixture from up to max_bookmakers_per_request books.

        Returns:
            Raw odds records (see engine/parser.py for the shape)
        """
        if len(bookmakers) > self.max_bookmakers_per_request:
            raise ValueError(
                f"At most {self.max_bookmakers_per_request} sportsbooks per request, got {len(bookmakers)}"
            )

        params = [("fixture_id", fixture_id)] + [("sportsbook", book) for book in bookmakers]
        data = await self._make_request("/fixtures/odds", params)

        entries = data.get("data") or []
        if not entries or not isinstance(entries[0], dict):
            return []
        return entries[0].get("odds") or []

    def get_metrics(self) -> dict:
        """Get feed health metrics."""
        return {
            "connected": self.health.connected,
            "requests": self.health.request_count,
            "errors": self.health.error_count,
            "last_success_age_ms": self.health.age_ms,
        }
