"""
De-vig probability strategy.

Reference bookmakers (sharp books, or simply every book we cannot bet at)
quote both sides of a line. Their implied probabilities sum to more than 1;
the excess is the margin ("vig"). Removing it gives a model-free estimate
of the true probability.

Two devigging functions:
- Multiplicative: divide each implied probability by the sum.
- Power: find k with p_over^k + p_under^k = 1. Puts relatively more of the
  margin on the longshot, which matches how books shade prices.

Each comparable reference quote is devigged on its own and the resulting
fair probabilities are averaged.
"""

from enum import Enum
from typing import Optional

import numpy as np
import structlog

from evscout.engine.estimator import ProbabilityEstimator
from evscout.models.schemas import (
    BookmakerPartition,
    BookQuote,
    EstimateMethod,
    FairProbability,
    PropositionGroup,
    Side,
    implied_probability,
)

logger = structlog.get_logger()


class DevigMethod(str, Enum):
    """Margin removal method."""
    MULTIPLICATIVE = "multiplicative"
    POWER = "power"


# Bisection settings for the power method
POWER_ITERATIONS = 50
POWER_TOLERANCE = 1e-4
POWER_BRACKET = (0.5, 2.0)
# The starting bracket does not hold for extreme margins; it is widened up to these limits
POWER_MIN_EXPONENT = 1e-3
POWER_MAX_EXPONENT = 64.0


# =============================================================================
# Devigging Functions
# =============================================================================

def vig_percent(price_a: float, price_b: float) -> float:
    """Bookmaker margin of a two-sided price pair, in percent."""
    return (implied_probability(price_a) + implied_probability(price_b) - 1) * 100


def devig_multiplicative(price_a: float, price_b: float) -> Optional[tuple[float, float]]:
    """
    Remove vig by normalizing implied probabilities.

    Args:
        price_a: Decimal price of one side
        price_b: Decimal price of the other side

    Returns:
        (fair_a, fair_b) summing to 1, or None for invalid prices
    """
    if price_a is None or price_b is None or price_a <= 1 or price_b <= 1:
        return None

    implied_a = 1 / price_a
    implied_b = 1 / price_b
    total = implied_a + implied_b

    fair_a = implied_a / total
    return fair_a, 1 - fair_a


def solve_power_exponent(
    implied_a: float,
    implied_b: float,
    iterations: int = POWER_ITERATIONS,
    tolerance: float = POWER_TOLERANCE,
) -> Optional[float]:
    """
    Find k such that implied_a^k + implied_b^k = 1 by bisection.

    The sum is strictly decreasing in k for probabilities in (0, 1), so a
    bracket with sum(low) >= 1 >= sum(high) always contains the root.
    """
    if not (0 < implied_a < 1 and 0 < implied_b < 1):
        return None

    def total(k: float) -> float:
        return implied_a ** k + implied_b ** k

    low, high = POWER_BRACKET
    while total(high) > 1 and high < POWER_MAX_EXPONENT:
        high *= 2
    while total(low) < 1 and low > POWER_MIN_EXPONENT:
        low /= 2
    if total(high) > 1 or total(low) < 1:
        return None

    k = (low + high) / 2
    for _ in range(iterations):
        k = (low + high) / 2
        s = total(k)
        if abs(s - 1) < tolerance:
            break
        if s > 1:
            low = k
        else:
            high = k

    return k


def devig_power(price_a: float, price_b: float) -> Optional[tuple[float, float]]:
    """
    Remove vig with the power method.

    Returns:
        (fair_a, fair_b) summing to 1, or None for invalid prices
    """
    if price_a is None or price_b is None or price_a <= 1 or price_b <= 1:
        return None

    implied_a = 1 / price_a
    implied_b = 1 / price_b
    k = solve_power_exponent(implied_a, implied_b)
    if k is None:
        return None

    # Renormalize away the bisection tolerance so the pair sums to exactly 1
    raw_a = implied_a ** k
    raw_b = implied_b ** k
    fair_a = raw_a / (raw_a + raw_b)
    return fair_a, 1 - fair_a


_DEVIG_FUNCTIONS = {
    DevigMethod.MULTIPLICATIVE: devig_multiplicative,
    DevigMethod.POWER: devig_power,
}


def devig(price_a: float, price_b: float, method: DevigMethod = DevigMethod.MULTIPLICATIVE) -> Optional[tuple[float, float]]:
    """Devig a two-sided price pair with the given method."""
    return _DEVIG_FUNCTIONS[DevigMethod(method)](price_a, price_b)


# =============================================================================
# Estimator
# =============================================================================

class DevigEstimator(ProbabilityEstimator):
    """
    Fair probability from reference bookmakers' two-sided prices.

    Usage:
        estimator = DevigEstimator(partition, method=DevigMethod.POWER)
        fair = estimator.estimate(group, 25.5, Side.OVER)
    """

    def __init__(
        self,
        partition: BookmakerPartition,
        method: DevigMethod = DevigMethod.MULTIPLICATIVE,
        line_tolerance: float = 0.5,
    ):
        self.partition = partition
        self.method = DevigMethod(method)
        self.line_tolerance = line_tolerance

    def reference_quotes(self, group: PropositionGroup, line: float) -> list[BookQuote]:
        """Reference-book quotes within line tolerance of the given line."""
        return [
            quote for quote in group.quotes
            if self.partition.is_reference(quote.bookmaker)
            and abs(quote.line - line) <= self.line_tolerance
        ]

    def estimate(
        self,
        group: PropositionGroup,
        line: float,
        side: Side,
    ) -> Optional[FairProbability]:
        fair_probs = []
        for quote in self.reference_quotes(group, line):
            pair = quote.pair(side)
            if pair is None:
                continue
            result = devig(pair[0], pair[1], self.method)
            if result is None:
                continue
            fair_probs.append(result[0])

        if not fair_probs:
            return None

        return FairProbability(
            subject=group.subject,
            market=group.market,
            line=line,
            side=side,
            probability=float(np.mean(fair_probs)),
            method=EstimateMethod.DEVIG,
            sample_size=len(fair_probs),
        )
