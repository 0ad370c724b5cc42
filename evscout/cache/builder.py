"""
Per-sport cache builder.

Runs one refresh cycle for a sport:
1. Check feed credentials (missing key -> ConfigurationError)
2. Fetch fixtures per league, keep the next `hours_ahead` hours
3. Per fixture, fetch odds in bookmaker batches (a failing batch is skipped)
4. Parse -> group -> estimate -> evaluate
5. Report progress after each fixture (5% -> 95%)

The builder never touches the snapshot store; the scheduler publishes
what it returns.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import structlog

from evscout.engine.devig import DevigEstimator, DevigMethod
from evscout.engine.estimator import ProbabilityEstimator
from evscout.engine.evaluator import EVConfig, EVEvaluator
from evscout.engine.forecast import FORECAST_MARKETS, ForecastEstimator
from evscout.engine.parser import FeedAdapter, OpticOddsAdapter, group_propositions, parse_propositions
from evscout.errors import ConfigurationError, FeedError
from evscout.feeds.base import FixtureFeed, OddsFeed, StatsFeed
from evscout.models.schemas import (
    BookmakerPartition,
    Fixture,
    FixtureResult,
    Opportunity,
    PropositionGroup,
    RefreshProgress,
    Sport,
)

logger = structlog.get_logger()


ProgressCallback = Callable[[RefreshProgress], None]


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class SportProfile:
    """Everything that differs between the sports' refresh cycles."""
    sport: Sport
    leagues: list[str]
    bookmakers: list[str]
    partition: BookmakerPartition
    ev: EVConfig = field(default_factory=EVConfig)
    devig_method: DevigMethod = DevigMethod.MULTIPLICATIVE
    line_tolerance: float = 0.5
    hours_ahead: float = 24.0

    # Pacing (seconds)
    batch_delay: float = 0.1
    fixture_delay: float = 0.2
    league_delay: float = 0.0

    # Only keep markets containing this token ("player_" for NBA props)
    market_filter: Optional[str] = None

    # Forecast strategy for match totals
    use_forecast: bool = False
    forecast_markets: dict[str, str] = field(default_factory=lambda: dict(FORECAST_MARKETS))
    stats_window: int = 15

    league_names: dict[str, str] = field(default_factory=dict)

    def league_display(self, league: str) -> str:
        return self.league_names.get(league, league)


@dataclass
class BuildResult:
    """Output of one refresh cycle."""
    sport: Sport
    fixtures: list[FixtureResult]
    opportunities: list[Opportunity]
    duration_seconds: float
    failed_batches: int = 0
    failed_fixtures: int = 0
    failed_leagues: int = 0

    def summary(self) -> dict:
        return {
            "sport": self.sport.value,
            "fixtures": len(self.fixtures),
            "opportunities": len(self.opportunities),
            "duration_seconds": round(self.duration_seconds, 2),
            "failed_batches": self.failed_batches,
            "failed_fixtures": self.failed_fixtures,
            "failed_leagues": self.failed_leagues,
        }


def parse_start_time(value) -> Optional[datetime]:
    """ISO-8601 start time (with "Z" or offset) to an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def batched(items: list[str], size: int) -> list[list[str]]:
    return [items[i:i + size] for i in range(0, len(items), max(1, size))]


# =============================================================================
# Builder
# =============================================================================

class CacheBuilder:
    """
    Builds one sport's fixtures and opportunities.

    Usage:
        builder = CacheBuilder(profile, fixture_feed=feed, odds_feed=feed)
        result = await builder.build(on_progress=print)
    """

    def __init__(
        self,
        profile: SportProfile,
        fixture_feed: FixtureFeed,
        odds_feed: OddsFeed,
        adapter: Optional[FeedAdapter] = None,
        stats_feed: Optional[StatsFeed] = None,
    ):
        self.profile = profile
        self.fixture_feed = fixture_feed
        self.odds_feed = odds_feed
        self.adapter = adapter or OpticOddsAdapter()
        self.stats_feed = stats_feed

        self.evaluator = EVEvaluator(profile.ev, profile.partition)
        self.devig = DevigEstimator(
            profile.partition,
            method=profile.devig_method,
            line_tolerance=profile.line_tolerance,
        )
        self.logger = logger.bind(component="cache_builder", sport=profile.sport.value)

    @property
    def sport(self) -> Sport:
        return self.profile.sport

    def check_configuration(self) -> None:
        if not self.fixture_feed.is_configured or not self.odds_feed.is_configured:
            raise ConfigurationError("OPTIC_ODDS_API_KEY not configured")

    async def build(self, on_progress: Optional[ProgressCallback] = None) -> BuildResult:
        """
        Run one refresh cycle.

        Raises:
            ConfigurationError: feed credentials missing
            FeedError: no league's fixture list could be fetched
        """
        self.check_configuration()
        started = time.time()

        def report(current: int, total: int, step: str, message: str, percent: int) -> None:
            if on_progress:
                on_progress(RefreshProgress(current, total, step, message, percent))

        report(0, 0, "fetching_fixtures", "Fetching fixtures...", 0)
        fixtures, failed_leagues = await self._collect_fixtures()
        total = len(fixtures)
        report(0, total, "processing", f"Found {total} fixtures to process...", 5)

        results: list[FixtureResult] = []
        opportunities: list[Opportunity] = []
        failed_batches = 0
        failed_fixtures = 0

        for index, fixture in enumerate(fixtures, start=1):
            try:
                result, batch_failures = await self._process_fixture(fixture)
                failed_batches += batch_failures
                results.append(result)
                opportunities.extend(result.opportunities)
            except Exception as e:
                failed_fixtures += 1
                self.logger.error(
                    "Fixture processing failed",
                    fixture_id=fixture.fixture_id,
                    fixture=fixture.name,
                    error=str(e),
                )

            percent = min(95, 5 + round(index / total * 90))
            report(
                index,
                total,
                "processing",
                f"{self.profile.league_display(fixture.league)}: {fixture.name} ({index}/{total})",
                percent,
            )

            if index < total and self.profile.fixture_delay > 0:
                await asyncio.sleep(self.profile.fixture_delay)

        opportunities.sort(key=lambda o: o.ev_percent, reverse=True)
        result = BuildResult(
            sport=self.sport,
            fixtures=results,
            opportunities=opportunities,
            duration_seconds=time.time() - started,
            failed_batches=failed_batches,
            failed_fixtures=failed_fixtures,
            failed_leagues=failed_leagues,
        )
        self.logger.info("Build complete", **result.summary())
        return result

    # =========================================================================
    # Fixtures
    # =========================================================================

    async def _collect_fixtures(self) -> tuple[list[Fixture], int]:
        now = datetime.now(timezone.utc)
        cutoff = now + timedelta(hours=self.profile.hours_ahead)

        fixtures: list[Fixture] = []
        failures = 0
        leagues = self.profile.leagues or [None]

        for position, league in enumerate(leagues):
            if position > 0 and self.profile.league_delay > 0:
                await asyncio.sleep(self.profile.league_delay)
            try:
                raw_fixtures = await self.fixture_feed.list_fixtures(self.sport, league)
            except FeedError as e:
                failures += 1
                self.logger.warning("Fixture fetch failed", league=league, error=str(e))
                continue

            for raw in raw_fixtures:
                fixture = self._to_fixture(raw, league)
                if fixture and now <= fixture.start_time <= cutoff:
                    fixtures.append(fixture)

        if failures == len(leagues):
            raise FeedError(f"Fixture fetch failed for all {failures} league(s)")

        fixtures.sort(key=lambda f: f.start_time)
        self.logger.info(
            "Fixtures collected",
            count=len(fixtures),
            hours_ahead=self.profile.hours_ahead,
            failed_leagues=failures,
        )
        return fixtures, failures

    def _to_fixture(self, raw: dict, league: Optional[str]) -> Optional[Fixture]:
        start_time = parse_start_time(raw.get("start_time"))
        if not raw.get("id") or start_time is None:
            return None
        return Fixture(
            fixture_id=str(raw["id"]),
            sport=self.sport,
            home=raw.get("home") or "Home",
            away=raw.get("away") or "Away",
            start_time=start_time,
            league=raw.get("league") or league or "",
        )

    # =========================================================================
    # Odds
    # =========================================================================

    async def fetch_fixture_odds(self, fixture_id: str) -> tuple[list[dict], int]:
        """
        Odds from every configured bookmaker, batched to the feed's cap.

        Returns:
            (records from the batches that succeeded, number of failed batches)
        """
        batch_size = self.odds_feed.max_bookmakers_per_request
        batches = batched(self.profile.bookmakers, batch_size)

        records: list[dict] = []
        failed = 0
        for position, batch in enumerate(batches):
            if position > 0 and self.profile.batch_delay > 0:
                await asyncio.sleep(self.profile.batch_delay)
            try:
                records.extend(await self.odds_feed.fetch_odds(fixture_id, batch))
            except FeedError as e:
                failed += 1
                self.logger.warning(
                    "Odds batch failed",
                    fixture_id=fixture_id,
                    bookmakers=batch,
                    error=str(e),
                )

        return records, failed

    async def _process_fixture(self, fixture: Fixture) -> tuple[FixtureResult, int]:
        records, failed_batches = await self.fetch_fixture_odds(fixture.fixture_id)
        if not records:
            return FixtureResult(fixture=fixture), failed_batches

        propositions = parse_propositions(
            records,
            self.adapter,
            fixture.fixture_id,
            market_filter=self.profile.market_filter,
        )
        groups = group_propositions(propositions, self.adapter)

        forecast = await self._forecast_estimator(fixture) if self.profile.use_forecast else None

        def estimator_for(group: PropositionGroup) -> Optional[ProbabilityEstimator]:
            if forecast is not None and forecast.supports(group):
                return forecast
            return self.devig

        opportunities = self.evaluator.evaluate_fixture(self.sport, fixture, groups, estimator_for)
        return (
            FixtureResult(fixture=fixture, opportunities=opportunities, propositions=len(propositions)),
            failed_batches,
        )

    async def _forecast_estimator(self, fixture: Fixture) -> Optional[ForecastEstimator]:
        """Forecast estimator from both teams' averages, or None if stats are unavailable."""
        if self.stats_feed is None or not self.stats_feed.is_configured:
            return None
        try:
            home = await self.stats_feed.team_averages(fixture.home, self.profile.stats_window, fixture.league)
            away = await self.stats_feed.team_averages(fixture.away, self.profile.stats_window, fixture.league)
        except FeedError as e:
            self.logger.warning("Team stats unavailable", fixture=fixture.name, error=str(e))
            return None
        if home is None or away is None:
            return None
        return ForecastEstimator(home, away, market_models=self.profile.forecast_markets)

    def get_metrics(self) -> dict:
        return self.evaluator.get_metrics()
