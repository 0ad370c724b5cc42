"""
Statistical forecast probability strategy.

Derives fair probabilities for match totals from historical team averages
instead of bookmaker prices. Coefficients are fixed heuristics, not fitted.

PROBABILITY MODELS:

1. GOALS - Poisson distribution
   Discrete, low counts. Each side's expectation is
   attack strength x opponent defensive weakness x league baseline.

2. CORNERS - Normal distribution (sigma 3.5)
   Home corners x 1.05, away corners x 0.95.

3. YELLOW CARDS - Normal distribution (sigma 1.8)
   Away cards x 1.05, optional referee factor (referee avg / 3.5).

4. SHOTS ON TARGET - Normal distribution (sigma 3.0)
   Home shots x 1.08, away shots x 0.95.

Normal models use a continuity correction at the half-integer boundary
floor(line) + 0.5, and over is always the complement of under.
"""

import math
from dataclasses import dataclass, field
from typing import Optional

import structlog
from scipy import stats

from evscout.engine.estimator import ProbabilityEstimator
from evscout.models.schemas import EstimateMethod, FairProbability, PropositionGroup, Side

logger = structlog.get_logger()


# =============================================================================
# Model Constants
# =============================================================================

# League baseline goals per game
LEAGUE_HOME_GOALS = 1.5
LEAGUE_AWAY_GOALS = 1.2

# Per-side goal expectation clamps: (low, high)
HOME_GOALS_RANGE = (0.5, 4.0)
AWAY_GOALS_RANGE = (0.3, 3.5)

# Fallback rates when a team's stats lack a metric: (metric, venue) -> rate
DEFAULT_RATES = {
    ("goals", "home"): 1.35,
    ("goals", "away"): 1.15,
    ("goals_conceded", "home"): 1.2,
    ("goals_conceded", "away"): 1.3,
    ("corners", "home"): 5.5,
    ("corners", "away"): 5.0,
    ("yellow_cards", "home"): 1.6,
    ("yellow_cards", "away"): 1.9,
    ("shots_on_target", "home"): 4.5,
    ("shots_on_target", "away"): 4.0,
}

# Normal models: metric -> (home multiplier, away multiplier, sigma)
NORMAL_MODELS = {
    "corners": (1.05, 0.95, 3.5),
    "yellow_cards": (1.0, 1.05, 1.8),
    "shots_on_target": (1.08, 0.95, 3.0),
}

LEAGUE_AVG_CARDS = 3.5

# Lines a standalone forecast covers per metric
MARKET_LINES = {
    "goals": [0.5, 1.5, 2.5, 3.5, 4.5],
    "corners": [7.5, 8.5, 9.5, 10.5, 11.5, 12.5],
    "yellow_cards": [2.5, 3.5, 4.5, 5.5, 6.5],
    "shots_on_target": [7.5, 8.5, 9.5, 10.5, 11.5],
}

# Feed market id -> forecast metric
FORECAST_MARKETS = {
    "total_goals": "goals",
    "total_corners": "corners",
    "total_cards": "yellow_cards",
    "total_yellow_cards": "yellow_cards",
    "total_shots_on_target": "shots_on_target",
}

# Keeps forecasts inside the open interval (0, 1)
_PROBABILITY_EPSILON = 1e-6


# =============================================================================
# Team Statistics
# =============================================================================

@dataclass
class TeamAverages:
    """
    Per-game averages for one team over a recent window.

    rates keys are a metric name, optionally suffixed with a venue:
    "goals", "goals_home", "goals_away", "goals_conceded", "corners_home", ...
    """
    team: str
    games: int
    rates: dict[str, float] = field(default_factory=dict)

    def rate(self, metric: str, venue: str) -> float:
        """Venue-specific rate, then overall rate, then league default."""
        for key in (f"{metric}_{venue}", metric):
            value = self.rates.get(key)
            if value:
                return value
        return DEFAULT_RATES.get((metric, venue), 0.0)


# =============================================================================
# Confidence
# =============================================================================

def confidence_level(probability: float) -> str:
    """Bucket a probability by how far it sits from a coin flip."""
    if probability >= 0.65 or probability <= 0.35:
        return "high"
    if probability >= 0.58 or probability <= 0.42:
        return "medium"
    return "low"


# =============================================================================
# Expectations
# =============================================================================

def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def expected_goals(home: TeamAverages, away: TeamAverages) -> tuple[float, float]:
    """
    Expected goals for each side.

    expected = attack strength x opponent defensive weakness x league baseline
    """
    home_attack = home.rate("goals", "home") / LEAGUE_HOME_GOALS
    home_defense = home.rate("goals_conceded", "home") / LEAGUE_AWAY_GOALS
    away_attack = away.rate("goals", "away") / LEAGUE_AWAY_GOALS
    away_defense = away.rate("goals_conceded", "away") / LEAGUE_HOME_GOALS

    home_expected = home_attack * away_defense * LEAGUE_HOME_GOALS
    away_expected = away_attack * home_defense * LEAGUE_AWAY_GOALS

    return (
        _clamp(home_expected, *HOME_GOALS_RANGE),
        _clamp(away_expected, *AWAY_GOALS_RANGE),
    )


def expected_normal_total(
    metric: str,
    home: TeamAverages,
    away: TeamAverages,
    referee_avg_cards: Optional[float] = None,
) -> tuple[float, float]:
    """Mean and sigma for a Normal-modelled match total."""
    home_mult, away_mult, sigma = NORMAL_MODELS[metric]
    mu = home.rate(metric, "home") * home_mult + away.rate(metric, "away") * away_mult

    if metric == "yellow_cards" and referee_avg_cards:
        mu *= referee_avg_cards / LEAGUE_AVG_CARDS

    return mu, sigma


# =============================================================================
# Probabilities
# =============================================================================

def goals_probability(home_expected: float, away_expected: float, line: float, side: Side) -> float:
    """
    Probability of a total goals side.

    under = PoissonCDF(home + away, floor(line)); over is the complement.
    """
    lam = home_expected + away_expected
    under = float(stats.poisson.cdf(math.floor(line), lam))
    return under if side == Side.UNDER else 1 - under


def normal_total_probability(mu: float, sigma: float, line: float, side: Side) -> float:
    """Probability of an over/under side with a Normal model and continuity correction."""
    boundary = math.floor(line) + 0.5
    under = float(stats.norm.cdf(boundary, loc=mu, scale=sigma))
    return under if side == Side.UNDER else 1 - under


# =============================================================================
# Estimator
# =============================================================================

class ForecastEstimator(ProbabilityEstimator):
    """
    Fair probability for match totals from the two teams' averages.

    Built per fixture, since it carries the home and away team stats.
    Only match-level groups in a known forecast market are estimated.

    Usage:
        estimator = ForecastEstimator(home_stats, away_stats)
        fair = estimator.estimate(group, 2.5, Side.OVER)
    """

    def __init__(
        self,
        home: TeamAverages,
        away: TeamAverages,
        market_models: Optional[dict[str, str]] = None,
        referee_avg_cards: Optional[float] = None,
    ):
        self.home = home
        self.away = away
        self.market_models = market_models if market_models is not None else FORECAST_MARKETS
        self.referee_avg_cards = referee_avg_cards

        self._goals = expected_goals(home, away)

    @property
    def sample_size(self) -> int:
        return min(self.home.games, self.away.games)

    def supports(self, group: PropositionGroup) -> bool:
        return group.is_match_level and group.market in self.market_models

    def probability(self, metric: str, line: float, side: Side) -> tuple[float, float]:
        """(probability, expected total) for a metric/line/side."""
        if metric == "goals":
            home_expected, away_expected = self._goals
            return goals_probability(home_expected, away_expected, line, side), home_expected + away_expected

        mu, sigma = expected_normal_total(metric, self.home, self.away, self.referee_avg_cards)
        return normal_total_probability(mu, sigma, line, side), mu

    def estimate(
        self,
        group: PropositionGroup,
        line: float,
        side: Side,
    ) -> Optional[FairProbability]:
        if side not in (Side.OVER, Side.UNDER) or not self.supports(group):
            return None

        metric = self.market_models[group.market]
        probability, expected = self.probability(metric, line, side)
        probability = _clamp(probability, _PROBABILITY_EPSILON, 1 - _PROBABILITY_EPSILON)

        return FairProbability(
            subject=group.subject,
            market=group.market,
            line=line,
            side=side,
            probability=probability,
            method=EstimateMethod.FORECAST,
            sample_size=self.sample_size,
            confidence=confidence_level(probability),
            expected=expected,
        )

    def predictions(
        self,
        min_probability: float = 0.52,
        max_probability: float = 0.72,
        metrics: Optional[list[str]] = None,
    ) -> list[FairProbability]:
        """
        Forecasts for every standard line of each metric, kept when inside
        the probability window.
        """
        results = []
        for metric in metrics or list(MARKET_LINES):
            for line in MARKET_LINES.get(metric, []):
                for side in (Side.OVER, Side.UNDER):
                    probability, expected = self.probability(metric, line, side)
                    if not (min_probability <= probability <= max_probability):
                        continue
                    results.append(FairProbability(
                        subject="match",
                        market=metric,
                        line=line,
                        side=side,
                        probability=probability,
                        method=EstimateMethod.FORECAST,
                        sample_size=self.sample_size,
                        confidence=confidence_level(probability),
                        expected=expected,
                    ))
        return results
