"""
Messaging channel contract and Telegram Bot API implementation.

Alerts are sent as Markdown messages with an inline keyboard. Each button
carries "action:bet_key" as callback data (Telegram caps this at 64 bytes),
and button presses come back through getUpdates long polling as
OperatorActions.
"""

import asyncio
import re
import ssl
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import certifi
import httpx
import structlog

from evscout.errors import ChannelError
from evscout.models.schemas import ActionType, OperatorAction

logger = structlog.get_logger()

CALLBACK_DATA_LIMIT = 64


# =============================================================================
# Buttons
# =============================================================================

@dataclass(frozen=True)
class Button:
    """Inline button that reports `action` for `bet_key` when pressed."""
    text: str
    action: ActionType
    bet_key: str

    def __post_init__(self):
        if len(self.callback_data.encode("utf-8")) > CALLBACK_DATA_LIMIT:
            raise ValueError(f"Callback data exceeds {CALLBACK_DATA_LIMIT} bytes: {self.callback_data}")

    @property
    def callback_data(self) -> str:
        return f"{self.action.value}:{self.bet_key}"


Keyboard = list[list[Button]]


def alert_keyboard(bet_key: str) -> Keyboard:
    return [[
        Button("✅ Track Bet", ActionType.TRACK, bet_key),
        Button("❌ Dismiss", ActionType.DISMISS, bet_key),
    ]]


def result_keyboard(bet_key: str) -> Keyboard:
    return [[
        Button("🏆 Won", ActionType.WON, bet_key),
        Button("💔 Lost", ActionType.LOST, bet_key),
        Button("➖ Push", ActionType.PUSH, bet_key),
    ]]


def parse_callback_data(data: str) -> Optional[tuple[ActionType, str]]:
    """"track:abc123" -> (ActionType.TRACK, "abc123"); None if malformed."""
    action, sep, bet_key = (data or "").partition(":")
    if not sep or not bet_key:
        return None
    try:
        return ActionType(action), bet_key
    except ValueError:
        return None


_MARKDOWN_SPECIAL = re.compile(r"([_*`\[])")


def escape_markdown(text: str) -> str:
    """Escape characters that legacy Markdown parse mode treats as markup."""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", str(text))


# =============================================================================
# Contract
# =============================================================================

class MessageChannel(ABC):
    """Outbound alerts plus inbound operator actions."""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        pass

    @abstractmethod
    async def send_message(self, text: str, buttons: Optional[Keyboard] = None) -> Optional[int]:
        """Send a message. Returns the message id, or None if it was not sent."""
        pass

    @abstractmethod
    async def edit_message(self, message_ref: int, text: str, buttons: Optional[Keyboard] = None) -> bool:
        """Replace a message's text; buttons=None removes the keyboard."""
        pass

    @abstractmethod
    async def delete_message(self, message_ref: int) -> bool:
        """Delete a message. False if the platform refused."""
        pass

    @abstractmethod
    async def acknowledge(self, event_id: str, text: str = "") -> bool:
        """Acknowledge a button press so the client stops showing it as pending."""
        pass

    @abstractmethod
    async def poll_actions(self, cursor: int, timeout: float) -> tuple[list[OperatorAction], int]:
        """
        Wait up to `timeout` seconds for operator actions after `cursor`.

        Returns (actions, new_cursor).

        Raises:
            ChannelError: the platform could not be polled
        """
        pass

    async def close(self) -> None:
        pass


# =============================================================================
# Telegram
# =============================================================================

@dataclass
class TelegramConfig:
    """Configuration for the Telegram Bot API."""
    bot_token: str
    chat_id: str
    base_url: str = "https://api.telegram.org"
    timeout: float = 15.0


class TelegramChannel(MessageChannel):
    """
    Telegram Bot API channel.

    Features:
    - Persistent HTTP client, created lazily behind a lock
    - Retry with progressive backoff on transient network errors
    - Rate-limit aware (429 -> skip until retry_after passes)

    Usage:
        channel = TelegramChannel(TelegramConfig(bot_token="123:abc", chat_id="-100..."))
        message_id = await channel.send_message("*Hello*", alert_keyboard(key))
    """

    # Retry settings
    MAX_RETRIES = 3
    RETRY_DELAYS = [1.0, 2.0, 5.0]  # Progressive backoff

    def __init__(self, config: TelegramConfig):
        self.config = config
        self.logger = logger.bind(component="telegram_channel")

        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()
        self._rate_limit_until: float = 0

        # Stats
        self._messages_sent = 0
        self._requests_failed = 0

    @property
    def is_configured(self) -> bool:
        return bool(self.config.bot_token and self.config.chat_id)

    @property
    def api_url(self) -> str:
        return f"{self.config.base_url}/bot{self.config.bot_token}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the persistent HTTP client."""
        async with self._client_lock:
            if self._client is None:
                ssl_context = ssl.create_default_context(cafile=certifi.where())
                self._client = httpx.AsyncClient(
                    verify=ssl_context,
                    timeout=self.config.timeout,
                    limits=httpx.Limits(max_keepalive_connections=3, max_connections=5),
                )
            return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        async with self._client_lock:
            if self._client:
                await self._client.aclose()
                self._client = None

    # =========================================================================
    # Core Request
    # =========================================================================

    async def _call(self, method: str, payload: dict, timeout: Optional[float] = None) -> Optional[dict]:
        """
        POST a Bot API method with retry on transient errors.

        Returns:
            The decoded response body ({"ok": ..., "result": ...}), or None
            if the request never got a usable response.
        """
        if not self.config.bot_token:
            return None

        if time.time() < self._rate_limit_until:
            self.logger.debug("Rate limited, skipping", method=method)
            return None

        for attempt in range(self.MAX_RETRIES):
            try:
                client = await self._get_client()
                response = await client.post(
                    f"{self.api_url}/{method}",
                    json=payload,
                    timeout=timeout or self.config.timeout,
                )
                body = response.json()

                if response.status_code == 429:
                    retry_after = body.get("parameters", {}).get("retry_after", 5)
                    self._rate_limit_until = time.time() + retry_after
                    self.logger.warning("Telegram rate limited", method=method, retry_after=retry_after)
                    return None

                if not body.get("ok"):
                    self.logger.debug(
                        "Telegram request refused",
                        method=method,
                        status=response.status_code,
                        description=body.get("description"),
                    )
                return body

            except (httpx.ConnectTimeout, httpx.ReadTimeout, httpx.ConnectError, httpx.PoolTimeout) as e:
                self._requests_failed += 1
                self.logger.debug(
                    "Telegram request failed",
                    method=method,
                    error_type=type(e).__name__,
                    attempt=attempt + 1,
                )
                if attempt < self.MAX_RETRIES - 1:
                    delay = self.RETRY_DELAYS[min(attempt, len(self.RETRY_DELAYS) - 1)]
                    await asyncio.sleep(delay)

            except (httpx.HTTPError, ValueError) as e:
                self._requests_failed += 1
                self.logger.warning("Telegram request error", method=method, error=str(e))
                return None

        self.logger.warning("Telegram unreachable", method=method, attempts=self.MAX_RETRIES)
        return None

    @staticmethod
    def _reply_markup(buttons: Optional[Keyboard]) -> dict:
        return {
            "inline_keyboard": [
                [{"text": b.text, "callback_data": b.callback_data} for b in row]
                for row in (buttons or [])
            ]
        }

    # =========================================================================
    # MessageChannel
    # =========================================================================

    async def send_message(self, text: str, buttons: Optional[Keyboard] = None) -> Optional[int]:
        if not self.is_configured:
            self.logger.warning("Bot token or chat id not configured")
            return None

        payload = {
            "chat_id": self.config.chat_id,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        if buttons:
            payload["reply_markup"] = self._reply_markup(buttons)

        body = await self._call("sendMessage", payload)
        if not body or not body.get("ok"):
            self.logger.error(
                "Failed to send message",
                description=body.get("description") if body else None,
            )
            return None

        self._messages_sent += 1
        return body["result"]["message_id"]

    async def edit_message(self, message_ref: int, text: str, buttons: Optional[Keyboard] = None) -> bool:
        body = await self._call("editMessageText", {
            "chat_id": self.config.chat_id,
            "message_id": message_ref,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
            "reply_markup": self._reply_markup(buttons),
        })
        return bool(body and body.get("ok"))

    async def delete_message(self, message_ref: int) -> bool:
        body = await self._call("deleteMessage", {
            "chat_id": self.config.chat_id,
            "message_id": message_ref,
        })
        return bool(body and body.get("ok"))

    async def acknowledge(self, event_id: str, text: str = "") -> bool:
        body = await self._call("answerCallbackQuery", {
            "callback_query_id": event_id,
            "text": text,
            "show_alert": False,
        })
        return bool(body and body.get("ok"))

    async def poll_actions(self, cursor: int, timeout: float) -> tuple[list[OperatorAction], int]:
        """Long-poll getUpdates for callback queries after update id `cursor`."""
        if not self.config.bot_token:
            raise ChannelError("TELEGRAM_BOT_TOKEN not configured")

        try:
            client = await self._get_client()
            response = await client.post(
                f"{self.api_url}/getUpdates",
                json={
                    "offset": cursor + 1,
                    "timeout": int(timeout),
                    "allowed_updates": ["callback_query"],
                },
                timeout=timeout + 5,
            )
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ChannelError(f"getUpdates failed: {type(e).__name__}: {e}") from e

        if not body.get("ok"):
            raise ChannelError(f"getUpdates refused: {body.get('description')}")

        actions: list[OperatorAction] = []
        for update in body.get("result", []):
            cursor = max(cursor, update.get("update_id", cursor))
            action = self._parse_callback(update.get("callback_query"))
            if action:
                actions.append(action)
        return actions, cursor

    def _parse_callback(self, query: Optional[dict]) -> Optional[OperatorAction]:
        if not query:
            return None
        parsed = parse_callback_data(query.get("data", ""))
        message = query.get("message") or {}
        if parsed is None:
            self.logger.warning("Invalid callback data", data=query.get("data"))
            return None

        action, bet_key = parsed
        return OperatorAction(
            event_id=str(query["id"]),
            action=action,
            bet_key=bet_key,
            message_ref=message.get("message_id"),
            message_text=message.get("text", ""),
        )

    def get_metrics(self) -> dict:
        return {
            "configured": self.is_configured,
            "messages_sent": self._messages_sent,
            "requests_failed": self._requests_failed,
            "rate_limited": time.time() < self._rate_limit_until,
        }
