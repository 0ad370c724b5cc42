"""Tests for operator action handling and the callback poller."""

import asyncio

import pytest

from evscout.alerts.poller import (
    PENDING_ACK_TEXT,
    ActionHandler,
    CallbackPoller,
    result_banner,
    tracking_card,
)
from evscout.alerts.storage import BetLedger, MemoryBetStore
from evscout.errors import ChannelError
from evscout.models.schemas import ActionType, BetStatus, Sport, TrackedBet
from tests.fakes import SlowStore, make_action, make_opportunity


@pytest.fixture
def opportunity():
    return make_opportunity()


@pytest.fixture
def sent_ledger(ledger, opportunity):
    """Ledger holding one alert sent as message 100."""
    ledger.record_sent(opportunity, message_ref=100, now_ms=0)
    return ledger


@pytest.fixture
def handler(channel, sent_ledger):
    return ActionHandler(channel, sent_ledger)


def run_actions(handler: ActionHandler, *actions):
    """Handle actions in order, then wait for background persistence."""
    async def scenario():
        results = [await handler.handle(action) for action in actions]
        await handler.drain()
        return results

    return asyncio.run(scenario())


class TestTrack:
    """Tests for the Track button."""

    def test_deletes_and_posts_tracking_card(self, handler, channel, sent_ledger, opportunity):
        key = opportunity.bet_key
        [result] = run_actions(handler, make_action(ActionType.TRACK, key))

        assert result.applied
        assert channel.acks == [("evt-1", "✅ Bet tracked!")]
        assert channel.deletes == [100]

        new_ref, text, buttons = channel.sent[0]
        assert text.startswith("📌 *TRACKED* (10.0% EV)")
        assert "Boston Celtics @ Los Angeles Lakers" in text
        assert [b.action for b in buttons[0]] == [ActionType.WON, ActionType.LOST, ActionType.PUSH]

        record = sent_ledger.get(key)
        assert record.status == BetStatus.TRACKED
        assert record.message_ref == new_ref

    def test_edit_fallback_when_delete_refused(self, handler, channel, opportunity):
        channel.allow_delete = False
        run_actions(handler, make_action(ActionType.TRACK, opportunity.bet_key))

        assert channel.sent == []
        ref, text, buttons = channel.edits[0]
        assert ref == 100
        assert text == "✅ *Tracked*"
        assert [b.action for b in buttons[0]] == [ActionType.WON, ActionType.LOST, ActionType.PUSH]


class TestDismiss:
    """Tests for the Dismiss button."""

    def test_deletes_message(self, handler, channel, sent_ledger, opportunity):
        run_actions(handler, make_action(ActionType.DISMISS, opportunity.bet_key))

        assert channel.deletes == [100]
        assert channel.acks == [("evt-1", "❌ Dismissed")]
        assert sent_ledger.get(opportunity.bet_key).status == BetStatus.DISMISSED

    def test_edit_fallback(self, handler, channel, opportunity):
        channel.allow_delete = False
        run_actions(handler, make_action(ActionType.DISMISS, opportunity.bet_key))
        assert channel.edits == [(100, "❌ Dismissed", None)]


class TestResults:
    """Tests for Won / Lost / Push."""

    def test_result_banner_appended(self, handler, channel, sent_ledger, opportunity):
        key = opportunity.bet_key
        run_actions(
            handler,
            make_action(ActionType.TRACK, key, event_id="evt-1"),
            make_action(ActionType.WON, key, event_id="evt-2", message_ref=101),
        )

        ref, text, buttons = channel.edits[-1]
        assert ref == 101
        assert text.endswith("\n\n━━━ *RESULT: 🏆 WON* ━━━")
        assert "📌 *TRACKED*" in text
        assert buttons is None
        assert sent_ledger.get(key).status == BetStatus.WON
        assert channel.acks[-1] == ("evt-2", "🏆 Marked as WON!")

    def test_result_without_stored_card_uses_message_text(self, channel):
        store = MemoryBetStore()
        asyncio.run(store.put(TrackedBet(
            key="k9", status=BetStatus.TRACKED, first_sent_ms=0, status_changed_ms=0,
            sport=Sport.NBA, ev_percent=9.0,
        )))
        handler = ActionHandler(channel, BetLedger(store))
        run_actions(handler, make_action(ActionType.PUSH, "k9", message_text="Jalen_Brunson OVER 25.5"))

        assert channel.edits[0][1] == "Jalen\\_Brunson OVER 25.5\n\n" + result_banner(ActionType.PUSH)

    def test_result_before_track_rejected(self, handler, channel, sent_ledger, opportunity):
        [result] = run_actions(handler, make_action(ActionType.LOST, opportunity.bet_key))

        assert not result.applied
        assert channel.acks == [("evt-1", "Track the bet before recording a result")]
        assert channel.edits == [] and channel.deletes == []
        assert sent_ledger.get(opportunity.bet_key).status == BetStatus.SENT

    def test_settled_bet_rejected(self, handler, channel, opportunity):
        key = opportunity.bet_key
        run_actions(
            handler,
            make_action(ActionType.TRACK, key, event_id="e1"),
            make_action(ActionType.WON, key, event_id="e2"),
            make_action(ActionType.LOST, key, event_id="e3"),
        )
        assert channel.acks[-1] == ("e3", "Bet already won")

    def test_unknown_bet(self, channel):
        handler = ActionHandler(channel, BetLedger())
        [result] = run_actions(handler, make_action(ActionType.TRACK, "nope"))

        assert not result.applied
        assert channel.acks == [("evt-1", "Bet not found")]

    def test_unknown_bet_with_store(self, handler, channel):
        [result] = run_actions(handler, make_action(ActionType.TRACK, "nope"))

        assert not result.applied
        assert channel.acks == [("evt-1", PENDING_ACK_TEXT)]
        assert handler.get_metrics()["rejected"] == 1


class TestDeliveryGuarantees:
    """Tests for duplicate delivery, acknowledgement and persistence."""

    def test_duplicate_event_is_noop(self, handler, channel, opportunity):
        action = make_action(ActionType.TRACK, opportunity.bet_key)
        first, second = run_actions(handler, action, action)

        assert first.applied
        assert second is None
        assert len(channel.acks) == 1
        assert len(channel.deletes) == 1
        assert handler.get_metrics()["duplicates"] == 1

    def test_ack_failure_does_not_block_transition(self, handler, channel, sent_ledger, opportunity):
        channel.ack_error = RuntimeError("network down")
        [result] = run_actions(handler, make_action(ActionType.TRACK, opportunity.bet_key))

        assert result.applied
        assert channel.deletes == [100]
        assert handler.get_metrics()["ack_failures"] == 1

    def test_slow_ack_times_out(self, channel, sent_ledger, opportunity):
        channel.ack_delay = 0.5
        handler = ActionHandler(channel, sent_ledger, ack_timeout=0.01)
        [result] = run_actions(handler, make_action(ActionType.DISMISS, opportunity.bet_key))

        assert result.applied
        assert handler.get_metrics()["ack_failures"] == 1

    def test_ack_not_held_by_slow_persistence(self, channel, opportunity):
        store = SlowStore(delay=0.2)
        ledger = BetLedger(store, timeout=5.0)
        ledger.record_sent(opportunity, message_ref=100, now_ms=0)
        handler = ActionHandler(channel, ledger)

        async def scenario():
            await handler.handle(make_action(ActionType.TRACK, opportunity.bet_key))
            acked_before_persist = list(channel.acks)
            pending = handler.get_metrics()["pending_persists"]
            await handler.drain()
            return acked_before_persist, pending, await store.get(opportunity.bet_key)

        acked, pending, stored = asyncio.run(scenario())
        assert acked == [("evt-1", "✅ Bet tracked!")]
        assert pending == 1
        assert stored.status == BetStatus.TRACKED

    def test_ack_not_held_by_slow_lookup(self, channel, opportunity):
        store = SlowStore(delay=0.5)
        seed = BetLedger(store)
        seed.record_sent(opportunity, message_ref=100, now_ms=0)
        asyncio.run(seed.persist(opportunity.bet_key))

        ledger = BetLedger(store, timeout=5.0)
        handler = ActionHandler(channel, ledger)

        async def scenario():
            task = asyncio.create_task(handler.handle(make_action(ActionType.TRACK, opportunity.bet_key)))
            await asyncio.sleep(0.1)
            acked_early = list(channel.acks)
            result = await task
            await handler.drain()
            return acked_early, result

        acked_early, result = asyncio.run(scenario())
        assert acked_early == [("evt-1", PENDING_ACK_TEXT)]
        assert result.applied
        assert channel.acks == acked_early
        assert channel.deletes == [100]
        assert ledger.get(opportunity.bet_key).status == BetStatus.TRACKED


class TestCallbackPoller:
    """Tests for CallbackPoller."""

    def test_poll_once_dispatches(self, channel, handler, opportunity):
        key = opportunity.bet_key
        channel.poll_results = [([
            make_action(ActionType.TRACK, key, event_id="a"),
            make_action(ActionType.TRACK, key, event_id="b", message_ref=None),
        ], 42)]
        poller = CallbackPoller(channel, handler)

        async def scenario():
            count = await poller.poll_once()
            await asyncio.gather(*poller._tasks)
            await handler.drain()
            return count

        assert asyncio.run(scenario()) == 2
        assert poller.cursor == 42
        assert len(channel.acks) == 2
        assert handler.get_metrics()["handled"] == 1
        assert handler.get_metrics()["rejected"] == 1

    def test_run_backs_off_and_recovers(self, channel, handler, opportunity):
        channel.poll_results = [
            ChannelError("getUpdates refused: Conflict: terminated by other getUpdates request"),
            ([make_action(ActionType.DISMISS, opportunity.bet_key)], 3),
        ]
        poller = CallbackPoller(channel, handler)
        poller.RETRY_DELAYS = [0.0]

        async def scenario():
            task = asyncio.create_task(poller.run())
            while poller.cursor != 3:
                await asyncio.sleep(0.001)
            poller.stop()
            await asyncio.wait_for(task, timeout=1.0)
            await asyncio.gather(*poller._tasks)
            await handler.drain()

        asyncio.run(scenario())
        metrics = poller.get_metrics()
        assert metrics["poll_failures"] == 1
        assert metrics["actions"] == 1
        assert not poller.is_running
        assert channel.deletes == [100]

    def test_handler_errors_isolated(self, channel, opportunity):
        class BrokenHandler(ActionHandler):
            async def handle(self, action):
                raise RuntimeError("boom")

        channel.poll_results = [([make_action(ActionType.TRACK, opportunity.bet_key)], 1)]
        poller = CallbackPoller(channel, BrokenHandler(channel, BetLedger()))

        async def scenario():
            await poller.poll_once()
            await asyncio.gather(*poller._tasks)

        asyncio.run(scenario())
        assert poller.cursor == 1

    def test_unconfigured_channel_not_polled(self, channel, handler):
        channel.configured = False
        channel.poll_results = [ChannelError("should not be polled")]
        poller = CallbackPoller(channel, handler)
        asyncio.run(poller.run())
        assert len(channel.poll_results) == 1


class TestTrackingCard:
    def test_without_opportunity(self):
        record = TrackedBet("k", BetStatus.TRACKED, 0, 0, Sport.NBA, 9.0)
        assert tracking_card(record) == "📌 *TRACKED*"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
