"""Deduplicated Telegram alerts and the tracked bet lifecycle."""

from evscout.alerts.lifecycle import RecentEventSet, can_transition, should_alert
from evscout.alerts.storage import BetLedger, BetStore, MemoryBetStore, JsonFileBetStore
from evscout.alerts.telegram import MessageChannel, TelegramChannel, TelegramConfig
from evscout.alerts.notifier import AlertCriteria, BetNotifier
from evscout.alerts.poller import ActionHandler, CallbackPoller

__all__ = [
    "RecentEventSet",
    "can_transition",
    "should_alert",
    "BetLedger",
    "BetStore",
    "MemoryBetStore",
    "JsonFileBetStore",
    "MessageChannel",
    "TelegramChannel",
    "TelegramConfig",
    "AlertCriteria",
    "BetNotifier",
    "ActionHandler",
    "CallbackPoller",
]
