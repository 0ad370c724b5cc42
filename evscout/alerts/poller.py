"""
Operator action handling.

CallbackPoller long-polls the channel and hands each button press to
ActionHandler in its own task, so a slow action never holds up the next
poll. Handling one action:

1. Drop it if its event id was already processed
2. Apply the lifecycle transition in memory
3. Acknowledge it (bounded by ack_timeout, failures only logged). A bet
   not held in memory is acknowledged with a neutral text before the
   durable lookup, never after it
4. Update the message: delete-or-edit for track/dismiss, result banner
   for won/lost/push
5. Persist the new state in a background task bounded by the ledger timeout
"""

import asyncio
from typing import Optional

import structlog

from evscout.alerts.lifecycle import ACTION_STATUS, RecentEventSet
from evscout.alerts.storage import BetLedger, TransitionOutcome, TransitionResult
from evscout.alerts.telegram import MessageChannel, escape_markdown, result_keyboard
from evscout.errors import ChannelError
from evscout.models.schemas import ActionType, BetStatus, OperatorAction, TrackedBet

logger = structlog.get_logger()


ACK_TEXT = {
    ActionType.TRACK: "✅ Bet tracked!",
    ActionType.DISMISS: "❌ Dismissed",
    ActionType.WON: "🏆 Marked as WON!",
    ActionType.LOST: "💔 Marked as LOST",
    ActionType.PUSH: "➖ Marked as PUSH",
}

# Sent before a durable lookup for a bet not held in memory
PENDING_ACK_TEXT = "⏳ Updating bet..."

RESULT_LABEL = {
    ActionType.WON: "🏆 WON",
    ActionType.LOST: "💔 LOST",
    ActionType.PUSH: "➖ PUSH",
}


def result_banner(action: ActionType) -> str:
    return f"━━━ *RESULT: {RESULT_LABEL[action]}* ━━━"


def rejection_text(result: TransitionResult) -> str:
    """Explain why a button press changed nothing."""
    if result.outcome == TransitionOutcome.UNKNOWN:
        return "Bet not found"
    current = result.previous
    if current == result.target:
        return f"Already {current.value}"
    if current == BetStatus.SENT:
        return "Track the bet before recording a result"
    if current is not None and current.is_terminal:
        return f"Bet already {current.value}"
    return f"Cannot mark a {current.value} bet as {result.target.value}"


def tracking_card(record: TrackedBet) -> str:
    """Compact card posted once a bet is tracked."""
    o = record.opportunity
    if not o:
        return "📌 *TRACKED*"

    fixture = o.get("fixture", {})
    home, away = fixture.get("home", ""), fixture.get("away", "")
    fixture_name = f"{away} @ {home}" if o.get("sport") == "nba" else f"{home} vs {away}"
    subject = fixture_name if o.get("subject") == "match" else o.get("subject", "")
    side = str(o.get("side", "")).upper()
    bookmaker = o.get("bookmaker_display") or o.get("bookmaker", "")

    return "\n".join([
        f"📌 *TRACKED* ({record.ev_percent:.1f}% EV)",
        "",
        f"👤 *{escape_markdown(subject)}*",
        f"📊 {escape_markdown(o.get('market_display') or o.get('market', ''))} *{side} {o.get('line', 0):g}*",
        f"💰 {o.get('price', 0):.2f} @ {escape_markdown(bookmaker)}",
        f"🏟️ {escape_markdown(fixture_name)}",
    ])


class ActionHandler:
    """
    Applies operator actions to the ledger and the outward-facing message.

    Usage:
        handler = ActionHandler(channel, ledger)
        await handler.handle(action)
    """

    def __init__(
        self,
        channel: MessageChannel,
        ledger: BetLedger,
        recent_capacity: int = 100,
        ack_timeout: float = 1.0,
    ):
        self.channel = channel
        self.ledger = ledger
        self.ack_timeout = ack_timeout
        self.logger = logger.bind(component="action_handler")

        self._recent = RecentEventSet(recent_capacity)
        self._persist_tasks: set[asyncio.Task] = set()

        # Stats
        self._handled = 0
        self._duplicates = 0
        self._rejected = 0
        self._ack_failures = 0

    async def handle(self, action: OperatorAction) -> Optional[TransitionResult]:
        """
        Process one operator action.

        Returns None for a redelivered event, otherwise the transition result.
        """
        if not self._recent.add(action.event_id):
            self._duplicates += 1
            self.logger.debug("Duplicate action ignored", event_id=action.event_id)
            return None

        self.logger.info(
            "Action received",
            action=action.action.value,
            key=action.bet_key,
            message_ref=action.message_ref,
        )

        # One answer per event, sent before any durable read
        acknowledged = False
        if self.ledger.get(action.bet_key) is None and self.ledger.store is not None:
            await self._acknowledge(action, PENDING_ACK_TEXT)
            acknowledged = True
            await self.ledger.lookup(action.bet_key)

        result = self.ledger.apply(action.bet_key, ACTION_STATUS[action.action], action.received_ms)

        if not result.applied:
            self._rejected += 1
            text = rejection_text(result)
            if acknowledged:
                self.logger.info("Action rejected", key=action.bet_key, reason=text)
            else:
                await self._acknowledge(action, text)
            return result

        if not acknowledged:
            await self._acknowledge(action, ACK_TEXT[action.action])

        if action.message_ref is not None:
            await self._update_message(action, result.record)

        self._spawn_persist(action.bet_key)
        self._handled += 1
        return result

    async def _acknowledge(self, action: OperatorAction, text: str) -> None:
        try:
            acknowledged = await asyncio.wait_for(
                self.channel.acknowledge(action.event_id, text),
                self.ack_timeout,
            )
        except asyncio.TimeoutError:
            acknowledged = False
        except Exception as e:
            self.logger.error("Acknowledge error", event_id=action.event_id, error=str(e))
            acknowledged = False

        if not acknowledged:
            self._ack_failures += 1
            self.logger.warning("Action not acknowledged", event_id=action.event_id)

    def _spawn_persist(self, key: str) -> None:
        task = asyncio.create_task(self.ledger.persist(key))
        self._persist_tasks.add(task)
        task.add_done_callback(self._persist_tasks.discard)

    # =========================================================================
    # Message Mutations
    # =========================================================================

    async def _update_message(self, action: OperatorAction, record: TrackedBet) -> None:
        ref = action.message_ref

        if action.action == ActionType.TRACK:
            if await self.channel.delete_message(ref):
                new_ref = await self.channel.send_message(tracking_card(record), result_keyboard(record.key))
                self.ledger.set_message_ref(record.key, new_ref)
            else:
                await self.channel.edit_message(ref, "✅ *Tracked*", result_keyboard(record.key))

        elif action.action == ActionType.DISMISS:
            if not await self.channel.delete_message(ref):
                await self.channel.edit_message(ref, "❌ Dismissed")

        else:
            body = tracking_card(record) if record.opportunity else escape_markdown(action.message_text)
            await self.channel.edit_message(ref, f"{body}\n\n{result_banner(action.action)}")

    async def drain(self) -> None:
        """Wait for in-flight persistence tasks (used on shutdown)."""
        if self._persist_tasks:
            await asyncio.gather(*self._persist_tasks, return_exceptions=True)

    def get_metrics(self) -> dict:
        return {
            "handled": self._handled,
            "duplicates": self._duplicates,
            "rejected": self._rejected,
            "ack_failures": self._ack_failures,
            "pending_persists": len(self._persist_tasks),
        }


class CallbackPoller:
    """
    Long-poll loop for operator actions.

    Usage:
        poller = CallbackPoller(channel, handler, poll_timeout=10)
        await poller.run()   # until poller.stop()
    """

    RETRY_DELAYS = [1.0, 2.0, 5.0, 10.0]  # Backoff after failed polls

    def __init__(self, channel: MessageChannel, handler: ActionHandler, poll_timeout: float = 10.0):
        self.channel = channel
        self.handler = handler
        self.poll_timeout = poll_timeout
        self.logger = logger.bind(component="callback_poller")

        self.cursor = 0
        self._running = False
        self._tasks: set[asyncio.Task] = set()

        # Stats
        self._polls = 0
        self._poll_failures = 0
        self._actions = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def poll_once(self) -> int:
        """
        One poll; each action is handled in its own task.

        Returns the number of actions dispatched.

        Raises:
            ChannelError: the poll failed
        """
        actions, self.cursor = await self.channel.poll_actions(self.cursor, self.poll_timeout)
        self._polls += 1
        for action in actions:
            task = asyncio.create_task(self._handle(action))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        self._actions += len(actions)
        return len(actions)

    async def _handle(self, action: OperatorAction) -> None:
        try:
            await self.handler.handle(action)
        except Exception as e:
            self.logger.error(
                "Action handling failed",
                action=action.action.value,
                key=action.bet_key,
                error=str(e),
            )

    async def run(self) -> None:
        if not self.channel.is_configured:
            self.logger.warning("Channel not configured, poller not started")
            return

        self._running = True
        self.logger.info("Callback poller started", poll_timeout=self.poll_timeout)
        failures = 0

        while self._running:
            try:
                await self.poll_once()
                failures = 0
            except asyncio.CancelledError:
                break
            except ChannelError as e:
                failures += 1
                self._poll_failures += 1
                delay = self.RETRY_DELAYS[min(failures - 1, len(self.RETRY_DELAYS) - 1)]
                # Another instance polling the same bot shows up as a Conflict
                log = self.logger.debug if "Conflict" in str(e) else self.logger.warning
                log("Poll failed", error=str(e), retry_in=delay)
                await asyncio.sleep(delay)

        self._running = False
        self.logger.info("Callback poller stopped")

    def stop(self) -> None:
        self._running = False

    def get_metrics(self) -> dict:
        return {
            "running": self._running,
            "cursor": self.cursor,
            "polls": self._polls,
            "poll_failures": self._poll_failures,
            "actions": self._actions,
            "in_flight": len(self._tasks),
            "handler": self.handler.get_metrics(),
        }
