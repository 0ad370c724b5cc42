"""Value detection engine: parsing, fair probability and EV evaluation."""

from evscout.engine.parser import OpticOddsAdapter, parse_propositions, group_propositions
from evscout.engine.devig import DevigEstimator, DevigMethod
from evscout.engine.forecast import ForecastEstimator, TeamAverages
from evscout.engine.evaluator import EVEvaluator, EVConfig, expected_value_percent

__all__ = [
    "OpticOddsAdapter",
    "parse_propositions",
    "group_propositions",
    "DevigEstimator",
    "DevigMethod",
    "ForecastEstimator",
    "TeamAverages",
    "EVEvaluator",
    "EVConfig",
    "expected_value_percent",
]
