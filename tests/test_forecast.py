"""Tests for the forecast strategy."""

import math

import pytest

from evscout.engine.forecast import (
    AWAY_GOALS_RANGE,
    HOME_GOALS_RANGE,
    ForecastEstimator,
    TeamAverages,
    confidence_level,
    expected_goals,
    expected_normal_total,
    goals_probability,
    normal_total_probability,
)
from evscout.models.schemas import EstimateMethod, PropositionGroup, Side


@pytest.fixture
def home_team():
    return TeamAverages("Arsenal", games=12, rates={
        "goals_home": 2.1, "goals_conceded_home": 0.8, "corners_home": 6.5,
    })


@pytest.fixture
def away_team():
    return TeamAverages("Chelsea", games=10, rates={
        "goals_away": 1.4, "goals_conceded_away": 1.3, "corners_away": 4.8,
    })


class TestGoalsModel:
    """Tests for the Poisson total goals model."""

    def test_over_two_and_a_half(self):
        # lambda = 1.5 + 1.1 = 2.6; over 2.5 = 1 - P(X <= 2)
        p = goals_probability(1.5, 1.1, 2.5, Side.OVER)
        assert p == pytest.approx(1 - math.exp(-2.6) * (1 + 2.6 + 2.6 ** 2 / 2))
        assert p == pytest.approx(0.4816, abs=1e-4)

    def test_under_half_goal_is_no_goals(self):
        assert goals_probability(1.0, 0.8, 0.5, Side.UNDER) == pytest.approx(math.exp(-1.8))

    def test_sides_are_complements(self):
        over = goals_probability(1.3, 0.9, 1.5, Side.OVER)
        under = goals_probability(1.3, 0.9, 1.5, Side.UNDER)
        assert over + under == pytest.approx(1.0)

    def test_expected_goals_clamped_high_home(self):
        strong = TeamAverages("A", 10, {"goals_home": 9.0, "goals_conceded_home": 9.0})
        weak = TeamAverages("B", 10, {"goals_away": 0.01, "goals_conceded_away": 9.0})
        home, away = expected_goals(strong, weak)
        assert home == HOME_GOALS_RANGE[1] == 4.0
        assert away == AWAY_GOALS_RANGE[0] == 0.3

    def test_expected_goals_clamped_high_away(self):
        weak = TeamAverages("A", 10, {"goals_home": 0.01, "goals_conceded_home": 9.0})
        strong = TeamAverages("B", 10, {"goals_away": 9.0, "goals_conceded_away": 0.01})
        home, away = expected_goals(weak, strong)
        assert home == HOME_GOALS_RANGE[0] == 0.5
        assert away == AWAY_GOALS_RANGE[1] == 3.5

    def test_missing_rates_use_defaults(self):
        home, away = expected_goals(TeamAverages("A", 5), TeamAverages("B", 5))
        assert home > 0 and away > 0


class TestNormalModel:
    """Tests for the Normal match totals model."""

    def test_continuity_correction(self):
        # Line 9.5 splits at 9.5: mu on the boundary is a coin flip
        assert normal_total_probability(9.5, 3.5, 9.5, Side.OVER) == pytest.approx(0.5)

    def test_matches_closed_form(self):
        # Under 10.5 with mu 9.0, sigma 3.0: z = (10.5 - 9.0) / 3.0 = 0.5
        expected = 0.5 * (1 + math.erf(0.5 / math.sqrt(2)))
        assert normal_total_probability(9.0, 3.0, 10.5, Side.UNDER) == pytest.approx(expected)
        assert expected == pytest.approx(0.6915, abs=1e-4)

    def test_whole_line_uses_half_point_boundary(self):
        # floor(10) + 0.5 = 10.5
        assert normal_total_probability(10.5, 3.0, 10.0, Side.UNDER) == pytest.approx(0.5)

    def test_sides_are_complements(self):
        over = normal_total_probability(10.2, 3.5, 9.5, Side.OVER)
        under = normal_total_probability(10.2, 3.5, 9.5, Side.UNDER)
        assert over + under == pytest.approx(1.0)

    def test_referee_adjusts_cards(self, home_team, away_team):
        base, _ = expected_normal_total("yellow_cards", home_team, away_team)
        strict, _ = expected_normal_total("yellow_cards", home_team, away_team, referee_avg_cards=5.25)
        assert strict == pytest.approx(base * 1.5)


class TestConfidence:
    """Tests for confidence bucketing."""

    @pytest.mark.parametrize("p,level", [
        (0.70, "high"), (0.30, "high"), (0.60, "medium"), (0.40, "medium"), (0.50, "low"),
    ])
    def test_levels(self, p, level):
        assert confidence_level(p) == level


class TestForecastEstimator:
    """Tests for ForecastEstimator."""

    def test_estimates_match_totals(self, home_team, away_team):
        estimator = ForecastEstimator(home_team, away_team)
        group = PropositionGroup("match", "total_goals")
        fair = estimator.estimate(group, 2.5, Side.OVER)

        assert fair.method == EstimateMethod.FORECAST
        assert fair.sample_size == 10
        assert 0 < fair.probability < 1
        assert fair.confidence in ("high", "medium", "low")
        assert fair.expected == pytest.approx(sum(expected_goals(home_team, away_team)))

    def test_corners_use_normal_model(self, home_team, away_team):
        estimator = ForecastEstimator(home_team, away_team)
        fair = estimator.estimate(PropositionGroup("match", "total_corners"), 10.5, Side.UNDER)
        mu, sigma = expected_normal_total("corners", home_team, away_team)
        assert fair.probability == pytest.approx(normal_total_probability(mu, sigma, 10.5, Side.UNDER))

    def test_player_props_not_supported(self, home_team, away_team):
        estimator = ForecastEstimator(home_team, away_team)
        group = PropositionGroup("Bukayo Saka", "player_shots", player_id="p9")
        assert not estimator.supports(group)
        assert estimator.estimate(group, 1.5, Side.OVER) is None

    def test_yes_no_sides_not_supported(self, home_team, away_team):
        estimator = ForecastEstimator(home_team, away_team)
        assert estimator.estimate(PropositionGroup("match", "total_goals"), 0.5, Side.YES) is None

    def test_predictions_inside_window(self, home_team, away_team):
        predictions = ForecastEstimator(home_team, away_team).predictions()
        assert predictions
        assert all(0.52 <= p.probability <= 0.72 for p in predictions)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
