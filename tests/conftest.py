"""Shared pytest fixtures."""

import pytest

from evscout.alerts.storage import BetLedger, MemoryBetStore
from tests.fakes import FakeChannel


@pytest.fixture
def channel():
    """Fresh recording channel."""
    return FakeChannel()


@pytest.fixture
def ledger():
    """Ledger over an in-memory store."""
    return BetLedger(MemoryBetStore())
