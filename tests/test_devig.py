"""Tests for the de-vig strategy."""

import random

import pytest

from evscout.engine.devig import (
    DevigEstimator,
    DevigMethod,
    devig,
    devig_multiplicative,
    devig_power,
    solve_power_exponent,
    vig_percent,
)
from evscout.models.schemas import (
    BookmakerPartition,
    BookQuote,
    EstimateMethod,
    PropositionGroup,
    Side,
)


@pytest.fixture
def partition():
    return BookmakerPartition.of(["bet365"])


def quote(bookmaker: str, line: float, over: float = None, under: float = None) -> BookQuote:
    prices = {}
    if over is not None:
        prices[Side.OVER] = over
    if under is not None:
        prices[Side.UNDER] = under
    return BookQuote(bookmaker=bookmaker, line=line, prices=prices)


def random_pairs(count: int, seed: int = 7):
    """Two-sided prices with margins between 0% and 15%."""
    rng = random.Random(seed)
    pairs = []
    for _ in range(count):
        fair = rng.uniform(0.14, 0.86)
        margin = rng.uniform(0.0, 0.15)
        pairs.append((1 / (fair * (1 + margin)), 1 / ((1 - fair) * (1 + margin))))
    return pairs


class TestDevigFunctions:
    """Tests for the margin removal functions."""

    def test_even_prices_are_coin_flip(self):
        for method in DevigMethod:
            fair_a, fair_b = devig(1.91, 1.91, method)
            assert fair_a == pytest.approx(0.5)
            assert fair_b == pytest.approx(0.5)

    def test_multiplicative_sums_to_one(self):
        for a, b in random_pairs(200):
            fair_a, fair_b = devig_multiplicative(a, b)
            assert fair_a + fair_b == pytest.approx(1.0, abs=1e-12)
            assert 0 < fair_a < 1

    def test_power_sums_to_one(self):
        for a, b in random_pairs(200, seed=11):
            result = devig_power(a, b)
            assert result is not None
            assert abs(sum(result) - 1) < 1e-3

    def test_power_exponent_converges(self):
        for a, b in random_pairs(200, seed=3):
            implied_a, implied_b = 1 / a, 1 / b
            k = solve_power_exponent(implied_a, implied_b)
            assert k is not None
            assert abs(implied_a ** k + implied_b ** k - 1) < 1e-3

    def test_power_handles_extreme_margin(self):
        # Implied sum ~1.9: outside the starting bracket
        result = devig_power(1.04, 1.08)
        assert result is not None
        assert abs(sum(result) - 1) < 1e-3

    def test_power_shades_longshot_more(self):
        favourite, longshot = devig_power(1.25, 4.0)
        mult_favourite, mult_longshot = devig_multiplicative(1.25, 4.0)
        assert longshot < mult_longshot
        assert favourite > mult_favourite

    @pytest.mark.parametrize("a,b", [(1.0, 2.0), (2.0, 0.9), (None, 2.0)])
    def test_invalid_prices(self, a, b):
        assert devig_multiplicative(a, b) is None
        assert devig_power(a, b) is None

    def test_vig_percent(self):
        assert vig_percent(2.0, 2.0) == pytest.approx(0.0)
        assert vig_percent(1.91, 1.91) == pytest.approx(4.712, abs=1e-3)


class TestDevigEstimator:
    """Tests for DevigEstimator."""

    def test_averages_reference_books(self, partition):
        group = PropositionGroup("LeBron James", "player_points", quotes=[
            quote("pinnacle", 25.5, over=1.91, under=1.91),
            quote("draftkings", 25.5, over=1.80, under=2.00),
            quote("bet365", 25.5, over=2.10, under=1.75),
        ])
        estimator = DevigEstimator(partition)
        fair = estimator.estimate(group, 25.5, Side.OVER)

        second = (1 / 1.80) / (1 / 1.80 + 1 / 2.00)
        assert fair.probability == pytest.approx((0.5 + second) / 2)
        assert fair.sample_size == 2
        assert fair.method == EstimateMethod.DEVIG

    def test_playable_book_never_used(self, partition):
        group = PropositionGroup("LeBron James", "player_points", quotes=[
            quote("bet365", 25.5, over=2.10, under=1.75),
        ])
        assert DevigEstimator(partition).estimate(group, 25.5, Side.OVER) is None

    def test_one_sided_quote_skipped(self, partition):
        group = PropositionGroup("LeBron James", "player_points", quotes=[
            quote("pinnacle", 25.5, over=1.91),
            quote("fanduel", 25.5, over=1.95, under=1.87),
        ])
        fair = DevigEstimator(partition).estimate(group, 25.5, Side.OVER)
        assert fair.sample_size == 1

    def test_line_tolerance(self, partition):
        group = PropositionGroup("LeBron James", "player_points", quotes=[
            quote("pinnacle", 26.0, over=1.91, under=1.91),
            quote("fanduel", 27.5, over=2.5, under=1.5),
        ])
        fair = DevigEstimator(partition, line_tolerance=0.5).estimate(group, 25.5, Side.OVER)
        assert fair.sample_size == 1
        assert fair.probability == pytest.approx(0.5)

    def test_under_side_is_complement(self, partition):
        group = PropositionGroup("LeBron James", "player_points", quotes=[
            quote("pinnacle", 25.5, over=1.80, under=2.00),
        ])
        estimator = DevigEstimator(partition, method=DevigMethod.POWER)
        over = estimator.estimate(group, 25.5, Side.OVER).probability
        under = estimator.estimate(group, 25.5, Side.UNDER).probability
        assert over + under == pytest.approx(1.0, abs=1e-9)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
