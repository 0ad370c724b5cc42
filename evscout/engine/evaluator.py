"""
EV Evaluator.

Combines a fair probability with playable bookmakers' prices:

    EV% = (fair_probability x decimal_price - 1) x 100

For every (subject, market, line bucket, side) with a usable fair
probability, the playable prices that clear the EV threshold and the max
price are ranked. The best one becomes the Opportunity's headline price;
the full ranked list is kept as all_bookmakers.

Filters applied:
1. Fair probability available (estimator returned something)
2. Enough supporting samples (reference books / games analysed)
3. Price > 1.0 and <= max price
4. EV% >= minimum
"""

import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import structlog

from evscout.engine.estimator import ProbabilityEstimator
from evscout.engine.parser import bookmaker_display
from evscout.models.schemas import (
    BookmakerPartition,
    BookmakerPrice,
    EstimateMethod,
    Fixture,
    Opportunity,
    PropositionGroup,
    Side,
    Sport,
)

logger = structlog.get_logger()


def expected_value_percent(fair_probability: float, price: float) -> float:
    """EV of a 1-unit stake, in percent."""
    return (fair_probability * price - 1) * 100


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class EVConfig:
    """Thresholds for turning fair probabilities into opportunities."""
    min_ev_percent: float = 3.0
    max_price: float = 10.0
    min_reference_books: int = 1    # De-vig: comparable reference quotes
    min_forecast_games: int = 3     # Forecast: games in the team averages

    def min_sample(self, method: EstimateMethod) -> int:
        if method == EstimateMethod.FORECAST:
            return self.min_forecast_games
        return self.min_reference_books


# =============================================================================
# Evaluator
# =============================================================================

class EVEvaluator:
    """
    Finds +EV playable prices for proposition groups.

    Strategy-agnostic: the caller supplies the estimator per group.

    Usage:
        evaluator = EVEvaluator(EVConfig(min_ev_percent=3.0), partition)
        opportunities = evaluator.evaluate_group(sport, fixture, group, estimator)
    """

    def __init__(
        self,
        config: Optional[EVConfig] = None,
        partition: Optional[BookmakerPartition] = None,
    ):
        self.config = config or EVConfig()
        self.partition = partition or BookmakerPartition.of([])
        self.logger = logger.bind(component="ev_evaluator")

        # Metrics
        self._buckets_evaluated = 0
        self._opportunities_found = 0
        self._rejection_counts: dict[str, int] = {}

    def _track_rejection(self, reason: str) -> None:
        self._rejection_counts[reason] = self._rejection_counts.get(reason, 0) + 1

    def evaluate_group(
        self,
        sport: Sport,
        fixture: Fixture,
        group: PropositionGroup,
        estimator: ProbabilityEstimator,
    ) -> list[Opportunity]:
        """Evaluate both sides of every playable line bucket of one group."""
        opportunities = []
        playable = group.line_buckets(self.partition.playable)

        for line, quotes in playable.items():
            sides = {side for quote in quotes for side in quote.prices}
            for side in sorted(sides, key=lambda s: s.value):
                self._buckets_evaluated += 1
                opportunity = self._evaluate_side(sport, fixture, group, estimator, line, side, quotes)
                if opportunity:
                    opportunities.append(opportunity)

        self._opportunities_found += len(opportunities)
        return opportunities

    def _evaluate_side(
        self,
        sport: Sport,
        fixture: Fixture,
        group: PropositionGroup,
        estimator: ProbabilityEstimator,
        line: float,
        side: Side,
        quotes: list,
    ) -> Optional[Opportunity]:
        fair = estimator.estimate(group, line, side)
        if fair is None:
            self._track_rejection("no_fair_probability")
            return None

        if fair.sample_size < self.config.min_sample(fair.method):
            self._track_rejection("insufficient_sample")
            return None

        best_by_book: dict[str, BookmakerPrice] = {}
        for quote in quotes:
            price = quote.price(side)
            if price is None or price <= 1.0:
                continue
            if price > self.config.max_price:
                self._track_rejection("price_too_high")
                continue

            ev = expected_value_percent(fair.probability, price)
            if ev < self.config.min_ev_percent:
                continue

            current = best_by_book.get(quote.bookmaker)
            if current is None or ev > current.ev_percent:
                best_by_book[quote.bookmaker] = BookmakerPrice(
                    bookmaker=quote.bookmaker,
                    price=price,
                    ev_percent=ev,
                    display_name=bookmaker_display(quote.bookmaker),
                )

        if not best_by_book:
            self._track_rejection("below_min_ev")
            return None

        ranked = sorted(best_by_book.values(), key=lambda b: b.ev_percent, reverse=True)
        best = ranked[0]

        return Opportunity(
            sport=sport,
            fixture=fixture,
            subject=group.subject,
            market=group.market,
            market_display=group.market_display,
            line=line,
            side=side,
            bookmaker=best.bookmaker,
            bookmaker_display=best.display_name,
            price=best.price,
            ev_percent=best.ev_percent,
            fair_probability=fair.probability,
            method=fair.method,
            sample_size=fair.sample_size,
            confidence=fair.confidence,
            all_bookmakers=ranked,
            is_player_prop=group.is_player_prop,
            detected_at_ms=int(time.time() * 1000),
        )

    def evaluate_fixture(
        self,
        sport: Sport,
        fixture: Fixture,
        groups: Iterable[PropositionGroup],
        estimator_for: Callable[[PropositionGroup], Optional[ProbabilityEstimator]],
    ) -> list[Opportunity]:
        """
        Evaluate every group of a fixture.

        Args:
            estimator_for: Picks the estimator for a group; None skips it
        """
        opportunities = []
        for group in groups:
            estimator = estimator_for(group)
            if estimator is None:
                continue
            opportunities.extend(self.evaluate_group(sport, fixture, group, estimator))

        opportunities.sort(key=lambda o: o.ev_percent, reverse=True)
        return opportunities

    def get_metrics(self) -> dict:
        """Get evaluator metrics."""
        return {
            "buckets_evaluated": self._buckets_evaluated,
            "opportunities_found": self._opportunities_found,
            "rejection_counts": dict(self._rejection_counts),
        }
