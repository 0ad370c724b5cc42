"""Value bet data models and schemas."""

from evscout.models.schemas import (
    Sport,
    Side,
    OddsFormat,
    Fixture,
    Proposition,
    BookQuote,
    PropositionGroup,
    BookmakerPartition,
    EstimateMethod,
    FairProbability,
    BookmakerPrice,
    Opportunity,
    FixtureResult,
    RefreshState,
    RefreshProgress,
    CacheSnapshot,
    BetStatus,
    ActionType,
    TrackedBet,
    OperatorAction,
    make_bet_key,
)

__all__ = [
    "Sport",
    "Side",
    "OddsFormat",
    "Fixture",
    "Proposition",
    "BookQuote",
    "PropositionGroup",
    "BookmakerPartition",
    "EstimateMethod",
    "FairProbability",
    "BookmakerPrice",
    "Opportunity",
    "FixtureResult",
    "RefreshState",
    "RefreshProgress",
    "CacheSnapshot",
    "BetStatus",
    "ActionType",
    "TrackedBet",
    "OperatorAction",
    "make_bet_key",
]
