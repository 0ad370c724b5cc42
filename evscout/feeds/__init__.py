"""Upstream data feeds."""

from evscout.feeds.base import FixtureFeed, OddsFeed, StatsFeed, FeedHealth
from evscout.feeds.optic_odds import OpticOddsFeed, OpticOddsConfig
from evscout.feeds.football_data import FootballDataStatsFeed, FootballDataConfig

__all__ = [
    "FixtureFeed",
    "OddsFeed",
    "StatsFeed",
    "FeedHealth",
    "OpticOddsFeed",
    "OpticOddsConfig",
    "FootballDataStatsFeed",
    "FootballDataConfig",
]
