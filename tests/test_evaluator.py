"""Tests for the EV evaluator."""

import random

import pytest

from evscout.engine.devig import DevigEstimator
from evscout.engine.estimator import ProbabilityEstimator
from evscout.engine.evaluator import EVConfig, EVEvaluator, expected_value_percent
from evscout.models.schemas import (
    BookmakerPartition,
    BookQuote,
    EstimateMethod,
    FairProbability,
    PropositionGroup,
    Side,
    Sport,
)
from tests.fakes import make_fixture


class FixedEstimator(ProbabilityEstimator):
    """Returns the same probability for every line and side."""

    def __init__(self, probability: float, sample_size: int = 5, method=EstimateMethod.DEVIG):
        self.probability = probability
        self.sample_size = sample_size
        self.method = method

    def estimate(self, group, line, side):
        if self.probability is None:
            return None
        return FairProbability(
            subject=group.subject,
            market=group.market,
            line=line,
            side=side,
            probability=self.probability,
            method=self.method,
            sample_size=self.sample_size,
        )


@pytest.fixture
def partition():
    return BookmakerPartition.of(["bet365", "betano"])


@pytest.fixture
def evaluator(partition):
    return EVEvaluator(EVConfig(min_ev_percent=3.0, max_price=10.0), partition)


@pytest.fixture
def fixture():
    return make_fixture()


def group_with(*quotes: BookQuote) -> PropositionGroup:
    return PropositionGroup("LeBron James", "player_points", "Points", list(quotes), player_id="p1")


class TestExpectedValue:
    """Tests for the EV formula."""

    def test_known_value(self):
        assert expected_value_percent(0.5, 2.10) == pytest.approx(5.0)

    def test_monotonic(self):
        rng = random.Random(5)
        for _ in range(200):
            p = rng.uniform(0.01, 0.99)
            price = rng.uniform(1.01, 15.0)
            bump = rng.uniform(0.001, 1.0)
            base = expected_value_percent(p, price)
            assert expected_value_percent(p, price + bump) > base
            assert expected_value_percent(min(0.999, p + bump / 10), price) > base


class TestEVEvaluator:
    """Tests for EVEvaluator."""

    def test_finds_opportunity(self, evaluator, fixture):
        group = group_with(
            BookQuote("pinnacle", 25.5, {Side.OVER: 1.91, Side.UNDER: 1.91}),
            BookQuote("bet365", 25.5, {Side.OVER: 2.10, Side.UNDER: 1.75}),
        )
        estimator = DevigEstimator(evaluator.partition)
        opps = evaluator.evaluate_group(Sport.NBA, fixture, group, estimator)

        assert len(opps) == 1
        opp = opps[0]
        assert opp.side == Side.OVER
        assert opp.bookmaker == "bet365"
        assert opp.bookmaker_display == "Bet365"
        assert opp.ev_percent == pytest.approx(5.0)
        assert opp.fair_probability == pytest.approx(0.5)
        assert opp.sample_size == 1
        assert opp.is_player_prop
        assert opp.market_display == "Points"

    def test_never_emits_below_threshold(self, partition, fixture):
        rng = random.Random(17)
        for _ in range(100):
            config = EVConfig(min_ev_percent=rng.uniform(0, 10), max_price=rng.uniform(2, 8), min_reference_books=2)
            evaluator = EVEvaluator(config, partition)
            quotes = [
                BookQuote(book, 25.5, {Side.OVER: rng.uniform(1.0, 9.0), Side.UNDER: rng.uniform(1.0, 9.0)})
                for book in ("bet365", "betano", "pinnacle", "fanduel")
            ]
            estimator = FixedEstimator(rng.uniform(0.2, 0.8), sample_size=rng.randint(0, 4))
            for opp in evaluator.evaluate_group(Sport.NBA, fixture, group_with(*quotes), estimator):
                assert opp.ev_percent >= config.min_ev_percent
                assert 1.0 < opp.price <= config.max_price
                assert opp.sample_size >= config.min_reference_books
                assert opp.bookmaker in partition.playable

    def test_max_price(self, evaluator, fixture):
        group = group_with(BookQuote("bet365", 25.5, {Side.OVER: 12.0}))
        assert evaluator.evaluate_group(Sport.NBA, fixture, group, FixedEstimator(0.5)) == []
        assert evaluator.get_metrics()["rejection_counts"]["price_too_high"] == 1

    def test_insufficient_sample(self, partition, fixture):
        evaluator = EVEvaluator(EVConfig(min_forecast_games=3), partition)
        group = group_with(BookQuote("bet365", 2.5, {Side.OVER: 2.5}))
        estimator = FixedEstimator(0.6, sample_size=2, method=EstimateMethod.FORECAST)

        assert evaluator.evaluate_group(Sport.FOOTBALL, fixture, group, estimator) == []
        assert evaluator.get_metrics()["rejection_counts"] == {"insufficient_sample": 1}

    def test_no_fair_probability(self, evaluator, fixture):
        group = group_with(BookQuote("bet365", 25.5, {Side.OVER: 2.5}))
        assert evaluator.evaluate_group(Sport.NBA, fixture, group, FixedEstimator(None)) == []
        assert evaluator.get_metrics()["rejection_counts"] == {"no_fair_probability": 1}

    def test_one_entry_per_bookmaker(self, evaluator, fixture):
        # 25.4 and 25.5 share a bucket; bet365 keeps its better price only
        group = group_with(
            BookQuote("bet365", 25.5, {Side.OVER: 2.2}),
            BookQuote("bet365", 25.4, {Side.OVER: 2.4}),
            BookQuote("betano", 25.5, {Side.OVER: 2.3}),
        )
        opps = evaluator.evaluate_group(Sport.NBA, fixture, group, FixedEstimator(0.5))

        assert len(opps) == 1
        ranked = opps[0].all_bookmakers
        assert [b.bookmaker for b in ranked] == ["bet365", "betano"]
        assert ranked[0].price == 2.4
        assert opps[0].price == 2.4

    def test_sides_evaluated_independently(self, evaluator, fixture):
        group = group_with(BookQuote("bet365", 25.5, {Side.OVER: 2.2, Side.UNDER: 2.2}))
        opps = evaluator.evaluate_group(Sport.NBA, fixture, group, FixedEstimator(0.5))
        assert {o.side for o in opps} == {Side.OVER, Side.UNDER}

    def test_reference_books_never_playable(self, evaluator, fixture):
        group = group_with(BookQuote("pinnacle", 25.5, {Side.OVER: 3.0}))
        assert evaluator.evaluate_group(Sport.NBA, fixture, group, FixedEstimator(0.5)) == []

    def test_evaluate_fixture_sorts_and_skips(self, evaluator, fixture):
        low = PropositionGroup("A", "player_points", quotes=[BookQuote("bet365", 10.5, {Side.OVER: 2.1})])
        high = PropositionGroup("B", "player_points", quotes=[BookQuote("bet365", 10.5, {Side.OVER: 2.6})])
        skipped = PropositionGroup("C", "player_points", quotes=[BookQuote("bet365", 10.5, {Side.OVER: 5.0})])

        def estimator_for(group):
            return None if group.subject == "C" else FixedEstimator(0.5)

        opps = evaluator.evaluate_fixture(Sport.NBA, fixture, [low, high, skipped], estimator_for)
        assert [o.subject for o in opps] == ["B", "A"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
