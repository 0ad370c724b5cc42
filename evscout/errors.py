"""
Exception hierarchy.

Feed clients raise FeedError for anything upstream (HTTP status, timeout,
rate limit, bad payload). The cache builder catches it per batch, fixture
or league and keeps going. ConfigurationError is fatal for one sport's
refresh cycle and surfaces as an ``error`` status. PersistenceError never
reaches readers: the ledger and snapshot store log it and fall back to
memory. ChannelError is raised by the messaging channel's poll call; the
callback poller backs off and polls again.
"""


class EVScoutError(Exception):
    """Base class for all evscout errors."""


class ConfigurationError(EVScoutError):
    """Required credentials or settings are missing."""


class FeedError(EVScoutError):
    """An upstream feed request failed or returned unusable data."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class PersistenceError(EVScoutError):
    """A durable store read or write failed."""


class ChannelError(EVScoutError):
    """The messaging platform could not be reached or rejected a poll."""
