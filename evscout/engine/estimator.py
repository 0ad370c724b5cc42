"""Probability estimator contract shared by the de-vig and forecast strategies."""

from abc import ABC, abstractmethod
from typing import Optional

from evscout.models.schemas import FairProbability, PropositionGroup, Side


class ProbabilityEstimator(ABC):
    """
    Produces a fair probability for one side of a proposition at one line.

    The EV evaluator only sees this interface, so it does not care whether
    the number came from stripping vig off reference books or from a
    statistical model.
    """

    @abstractmethod
    def estimate(
        self,
        group: PropositionGroup,
        line: float,
        side: Side,
    ) -> Optional[FairProbability]:
        """Return the fair probability, or None when none can be derived."""
