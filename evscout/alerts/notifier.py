"""
Telegram alert engine.

After each refresh cycle the scheduler hands the sport's opportunities to
BetNotifier.process_opportunities(), which:
1. Sorts by EV (best first)
2. Applies the alert criteria (EV, odds cap, bookmakers, sports)
3. Looks up the bet key's lifecycle record and asks should_alert()
4. Sends the alert with Track / Dismiss buttons and records it as sent

At most `max_alerts_per_cycle` alerts go out per cycle, `send_delay`
seconds apart.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

import structlog

from evscout.alerts.lifecycle import should_alert
from evscout.alerts.storage import BetLedger
from evscout.alerts.telegram import MessageChannel, alert_keyboard, escape_markdown
from evscout.models.schemas import EstimateMethod, Opportunity, Sport

logger = structlog.get_logger()


@dataclass
class AlertCriteria:
    """Which opportunities are worth a push alert."""
    enabled: bool = True
    min_ev_percent: float = 8.0
    max_odds: float = 3.5
    bookmakers: list[str] = field(default_factory=lambda: ["bet365"])
    sports: list[Sport] = field(default_factory=lambda: [Sport.NBA])
    cooldown_minutes: float = 10.0
    max_alerts_per_cycle: int = 5
    send_delay: float = 2.0
    max_tracked_hours: Optional[float] = None  # None = tracked bets never alert again

    @property
    def cooldown_ms(self) -> int:
        return int(self.cooldown_minutes * 60 * 1000)

    @property
    def max_tracked_ms(self) -> Optional[int]:
        if self.max_tracked_hours is None:
            return None
        return int(self.max_tracked_hours * 60 * 60 * 1000)

    def matches(self, opportunity: Opportunity, sport: Sport) -> bool:
        if not self.enabled:
            return False
        if opportunity.ev_percent < self.min_ev_percent:
            return False
        if opportunity.price > self.max_odds:
            return False
        if sport not in self.sports:
            return False
        bookmaker = opportunity.bookmaker.lower()
        return any(b.lower() in bookmaker for b in self.bookmakers)


def resolve_timezone(name: Optional[str]) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def ev_emoji(ev_percent: float) -> str:
    if ev_percent >= 15:
        return "🔥🔥"
    if ev_percent >= 10:
        return "🔥"
    return "⚡"


def time_until_label(hours: float) -> str:
    rounded = round(hours)
    if rounded > 24:
        return f"{round(rounded / 24)}d"
    return f"{rounded}h"


class BetNotifier:
    """
    Deduplicated alert sender.

    Usage:
        notifier = BetNotifier(channel, ledger, AlertCriteria(min_ev_percent=8))
        counts = await notifier.process_opportunities(Sport.NBA, snapshot.opportunities)
    """

    def __init__(
        self,
        channel: MessageChannel,
        ledger: BetLedger,
        criteria: Optional[AlertCriteria] = None,
        display_timezone: Optional[str] = None,
    ):
        self.channel = channel
        self.ledger = ledger
        self.criteria = criteria or AlertCriteria()
        self.tz = resolve_timezone(display_timezone)
        self.logger = logger.bind(component="bet_notifier")

        # Stats
        self._alerts_sent = 0
        self._alerts_suppressed = 0
        self._send_failures = 0

    @property
    def is_active(self) -> bool:
        return self.criteria.enabled and self.channel.is_configured

    # =========================================================================
    # Alert Path
    # =========================================================================

    async def process_opportunities(
        self,
        sport: Sport,
        opportunities: list[Opportunity],
        now_ms: Optional[int] = None,
    ) -> dict:
        """
        Send alerts for qualifying opportunities.

        Returns:
            {"sent", "suppressed", "filtered", "failed"} counts
        """
        counts = {"sent": 0, "suppressed": 0, "filtered": 0, "failed": 0}
        if not self.is_active:
            return counts

        for opportunity in sorted(opportunities, key=lambda o: o.ev_percent, reverse=True):
            if not self.criteria.matches(opportunity, sport):
                counts["filtered"] += 1
                continue

            key = opportunity.bet_key
            record = await self.ledger.lookup(key)
            current_ms = now_ms if now_ms is not None else int(time.time() * 1000)
            if not should_alert(record, current_ms, self.criteria.cooldown_ms, self.criteria.max_tracked_ms):
                counts["suppressed"] += 1
                continue

            message_ref = await self.channel.send_message(
                self.format_message(opportunity),
                alert_keyboard(key),
            )
            if message_ref is None:
                counts["failed"] += 1
                self._send_failures += 1
                continue

            self.ledger.record_sent(opportunity, message_ref, current_ms)
            await self.ledger.persist(key)
            counts["sent"] += 1
            self._alerts_sent += 1

            self.logger.info(
                "Alert sent",
                sport=sport.value,
                subject=opportunity.subject,
                market=opportunity.market,
                side=opportunity.side.value,
                line=opportunity.line,
                ev_percent=round(opportunity.ev_percent, 1),
                message_ref=message_ref,
            )

            if counts["sent"] >= self.criteria.max_alerts_per_cycle:
                self.logger.info("Alert cap reached for cycle", cap=self.criteria.max_alerts_per_cycle)
                break

            if self.criteria.send_delay > 0:
                await asyncio.sleep(self.criteria.send_delay)

        self._alerts_suppressed += counts["suppressed"]
        if counts["sent"] or counts["suppressed"]:
            self.logger.info(
                "Alerts processed",
                sport=sport.value,
                min_ev=self.criteria.min_ev_percent,
                bookmakers=self.criteria.bookmakers,
                **counts,
            )
        return counts

    # =========================================================================
    # Formatting
    # =========================================================================

    def format_message(self, opportunity: Opportunity, now: Optional[datetime] = None) -> str:
        """Full alert card in Telegram Markdown."""
        now = now or datetime.now(timezone.utc)
        o = opportunity
        fixture = o.fixture
        subject = fixture.name if o.subject == "match" else o.subject

        if o.method == EstimateMethod.FORECAST:
            basis = f"📚 Forecast from {o.sample_size} games"
            if o.confidence:
                basis += f" ({o.confidence} confidence)"
        else:
            basis = f"📚 Based on {o.sample_size} sharp books"

        lines = [
            f"{ev_emoji(o.ev_percent)} *{o.ev_percent:.1f}% EV* {o.sport.emoji}",
            "",
            f"👤 *{escape_markdown(subject)}*",
            f"📊 {escape_markdown(o.market_display or o.market)} *{o.side.label} {o.line:g}*",
            "",
            f"💰 *Odds: {o.price:.2f}* @ {escape_markdown(o.bookmaker_display or o.bookmaker)}",
            f"📈 Fair Odds: {o.fair_odds:.2f} ({o.fair_probability * 100:.1f}% prob)",
            basis,
            f"💵 Kelly stake: {o.kelly_fraction * 100:.1f}% of bankroll",
            "",
            "━━━ *MATCH INFO* ━━━",
            f"🏟️ {escape_markdown(fixture.name)}",
            f"⏰ {fixture.start_time.astimezone(self.tz).strftime('%a %d %b %H:%M')} "
            f"({time_until_label(fixture.hours_until(now))})",
        ]

        if len(o.all_bookmakers) > 1:
            lines.append("")
            lines.append("━━━ *OTHER BOOKS* ━━━")
            for book in o.all_bookmakers[:4]:
                name = escape_markdown(book.display_name or book.bookmaker)
                lines.append(f"• {name}: {book.price:.2f} ({book.ev_percent:.1f}%)")

        lines.append("")
        lines.append(f"🕐 Found: {now.astimezone(self.tz).strftime('%H:%M:%S')}")
        return "\n".join(lines)

    def format_criteria(self) -> list[str]:
        c = self.criteria
        return [
            f"• Min EV: {c.min_ev_percent}%",
            f"• Max Odds: {c.max_odds}",
            f"• Bookmakers: {escape_markdown(', '.join(c.bookmakers))}",
            f"• Sports: {', '.join(s.value.upper() for s in c.sports)}",
            f"• Cooldown: {c.cooldown_minutes:g} min",
            f"• Max alerts per cycle: {c.max_alerts_per_cycle}",
        ]

    # =========================================================================
    # Service Messages
    # =========================================================================

    async def send_startup_message(self, sports: list[Sport], refresh_interval: float) -> bool:
        if not self.is_active:
            return False
        lines = [
            "🚀 *EV Scout Started*",
            "",
            f"Sports: {' '.join(f'{s.emoji} {s.value.upper()}' for s in sports)}",
            f"Refresh: every {refresh_interval / 60:g} min",
            "",
            "📊 *Alert Criteria:*",
            *self.format_criteria(),
        ]
        return await self.channel.send_message("\n".join(lines)) is not None

    async def send_test_message(self) -> bool:
        """Current criteria plus bet statistics; confirms the channel works."""
        stats = self.ledger.stats()
        win_rate = f"{stats['win_rate']:.1f}%" if stats["win_rate"] is not None else "N/A"
        lines = [
            "🧪 *Test Message*",
            "",
            "Telegram notifications are working!",
            "",
            "📊 *Current Settings:*",
            *self.format_criteria(),
            "",
            "📈 *Bet Statistics:*",
            f"• Total Sent: {stats['total']}",
            f"• Tracked: {stats['tracked']}",
            f"• Won/Lost: {stats['won']}/{stats['lost']} ({win_rate})",
            f"• Avg EV: {stats['avg_ev']:.1f}%",
            "",
            f"🔔 Alerts when: EV ≥ {self.criteria.min_ev_percent}% @ "
            f"{escape_markdown('/'.join(self.criteria.bookmakers))}",
        ]
        return await self.channel.send_message("\n".join(lines)) is not None

    def get_metrics(self) -> dict:
        return {
            "active": self.is_active,
            "alerts_sent": self._alerts_sent,
            "alerts_suppressed": self._alerts_suppressed,
            "send_failures": self._send_failures,
        }
