"""
EV Scout - Main Entry Point.

Runs the value bet detection service:
1. Refresh each sport's opportunity cache on a staggered timer
   (OpticOdds fixtures + odds -> de-vig / forecast -> EV)
2. Push qualifying opportunities to Telegram, deduplicated per bet key
3. Long-poll Telegram for Track / Dismiss / Won / Lost / Push presses
4. Sweep old bets and save cache snapshots periodically

Usage:
    python -m evscout.main
    python -m evscout.main --test-message

Environment Variables:
    OPTIC_ODDS_API_KEY     - Required: OpticOdds API key
    FOOTBALL_DATA_API_KEY  - Optional: football-data.org token (forecast strategy)
    TELEGRAM_BOT_TOKEN     - Optional: Telegram bot token (alerts disabled without it)
    TELEGRAM_CHAT_ID       - Optional: chat to send alerts to
"""

from dotenv import load_dotenv
load_dotenv()

import asyncio
import signal
import sys
import time
from typing import Optional

import structlog

from config.settings import Settings, SportSettings, get_settings
from evscout.alerts.notifier import AlertCriteria, BetNotifier
from evscout.alerts.poller import ActionHandler, CallbackPoller
from evscout.alerts.storage import BetLedger, JsonFileBetStore
from evscout.alerts.telegram import TelegramChannel, TelegramConfig
from evscout.cache.builder import CacheBuilder, SportProfile
from evscout.cache.scheduler import RefreshScheduler
from evscout.cache.store import SnapshotStore
from evscout.engine.devig import DevigMethod
from evscout.engine.evaluator import EVConfig
from evscout.feeds.football_data import FootballDataConfig, FootballDataStatsFeed
from evscout.feeds.optic_odds import OpticOddsConfig, OpticOddsFeed
from evscout.models.schemas import BookmakerPartition, Opportunity, Sport
from evscout.utils.logging import RefreshMetricsLogger, setup_logging

logger = structlog.get_logger()


def profile_from_settings(
    sport: Sport,
    sport_settings: SportSettings,
    batch_delay: float = 0.1,
    stats_window: int = 15,
) -> SportProfile:
    """Translate one sport's settings section into a builder profile."""
    s = sport_settings
    return SportProfile(
        sport=sport,
        leagues=s.league_list,
        bookmakers=s.bookmaker_list,
        partition=BookmakerPartition.of(s.playable_list, s.reference_list or None),
        ev=EVConfig(
            min_ev_percent=s.min_ev_percent,
            max_price=s.max_odds,
            min_reference_books=s.min_reference_books,
            min_forecast_games=s.min_forecast_games,
        ),
        devig_method=DevigMethod(s.devig_method),
        line_tolerance=s.line_tolerance,
        hours_ahead=s.hours_ahead,
        batch_delay=batch_delay,
        fixture_delay=s.fixture_delay,
        league_delay=s.league_delay,
        market_filter=s.market_filter or None,
        use_forecast=s.use_forecast,
        stats_window=stats_window,
        league_names=dict(getattr(s, "league_names", {})),
    )


def criteria_from_settings(settings: Settings) -> AlertCriteria:
    t = settings.telegram
    sports = [sport for sport in (Sport.from_string(s) for s in t.sport_list) if sport]
    return AlertCriteria(
        enabled=t.enabled,
        min_ev_percent=t.min_ev,
        max_odds=t.max_odds,
        bookmakers=t.bookmaker_list,
        sports=sports,
        cooldown_minutes=t.cooldown_minutes,
        max_alerts_per_cycle=t.max_alerts_per_cycle,
        send_delay=t.send_delay,
        max_tracked_hours=t.max_tracked_hours,
    )


class EVScoutBot:
    """
    Value bet service.

    Wires settings -> feeds -> builders -> store -> scheduler, and
    ledger -> notifier -> poller for the alert path.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.logger = logger.bind(component="evscout_bot")
        s = self.settings

        # Feeds
        self.odds_feed = OpticOddsFeed(OpticOddsConfig(
            api_key=s.optic_odds.api_key,
            base_url=s.optic_odds.base_url,
            timeout=s.optic_odds.timeout,
            requests_per_minute=s.optic_odds.requests_per_minute,
            max_bookmakers_per_request=s.optic_odds.max_bookmakers_per_request,
        ))
        self.stats_feed = FootballDataStatsFeed(FootballDataConfig(
            api_key=s.football_data.api_key,
            base_url=s.football_data.base_url,
            request_spacing=s.football_data.request_spacing,
            cache_ttl_seconds=s.football_data.cache_ttl_hours * 3600,
        ))

        if not self.odds_feed.is_configured:
            self.logger.warning("OPTIC_ODDS_API_KEY not set, refresh cycles will report an error")

        # Cache
        self.store = SnapshotStore(persist_path=s.storage.snapshot_path)
        self.builders: dict[Sport, CacheBuilder] = {}
        for sport, sport_settings in ((Sport.NBA, s.nba), (Sport.FOOTBALL, s.football)):
            if not sport_settings.enabled:
                continue
            profile = profile_from_settings(
                sport,
                sport_settings,
                batch_delay=s.optic_odds.batch_delay,
                stats_window=s.football_data.window,
            )
            self.builders[sport] = CacheBuilder(
                profile,
                fixture_feed=self.odds_feed,
                odds_feed=self.odds_feed,
                stats_feed=self.stats_feed if sport == Sport.FOOTBALL else None,
            )

        if not self.builders:
            raise ValueError("No sports enabled (NBA_ENABLED / FOOTBALL_ENABLED)")

        # Alerts
        self.channel = TelegramChannel(TelegramConfig(
            bot_token=s.telegram.bot_token,
            chat_id=s.telegram.chat_id,
        ))
        self.ledger = BetLedger(JsonFileBetStore(s.storage.bets_path), timeout=s.telegram.storage_timeout)
        self.notifier = BetNotifier(
            self.channel,
            self.ledger,
            criteria_from_settings(s),
            display_timezone=s.telegram.display_timezone,
        )
        self.handler = ActionHandler(
            self.channel,
            self.ledger,
            recent_capacity=s.telegram.recent_event_capacity,
            ack_timeout=s.telegram.ack_timeout,
        )
        self.poller = CallbackPoller(self.channel, self.handler, poll_timeout=s.telegram.poll_timeout)

        if not self.channel.is_configured:
            self.logger.warning("Telegram not configured, alerts disabled")

        self.scheduler = RefreshScheduler(
            self.store,
            self.builders,
            interval_seconds=s.scheduler.refresh_interval,
            offsets={Sport.NBA: s.scheduler.nba_offset, Sport.FOOTBALL: s.scheduler.football_offset},
            progress_clear_delay=s.scheduler.progress_clear_delay,
            on_refreshed=self._on_refreshed,
            metrics_logger=RefreshMetricsLogger(s.log_dir),
        )

        self._running = False
        self._shutdown_event = asyncio.Event()
        self._start_time_ms = 0

    async def start(self) -> None:
        """Start the service and run until shutdown."""
        self.logger.info(
            "Starting EV Scout",
            sports=[sport.value for sport in self.builders],
            refresh_interval=self.settings.scheduler.refresh_interval,
            alerts=self.notifier.is_active,
        )

        self._running = True
        self._start_time_ms = int(time.time() * 1000)

        self.store.load()
        await self.ledger.load()

        await self.notifier.send_startup_message(
            list(self.builders),
            self.settings.scheduler.refresh_interval,
        )

        try:
            await asyncio.gather(
                self.scheduler.run(),
                self.poller.run(),
                self._maintenance_loop(),
            )
        except asyncio.CancelledError:
            self.logger.info("Bot cancelled")

        await self.stop()

    async def stop(self) -> None:
        """Stop timers, flush state and close clients."""
        self.logger.info("Stopping EV Scout...")
        self._running = False
        self.scheduler.stop()
        self.poller.stop()

        await self.scheduler.drain(self.settings.scheduler.shutdown_timeout)
        await self.handler.drain()
        await self.store.save()

        if self.notifier.is_active:
            runtime_seconds = (int(time.time() * 1000) - self._start_time_ms) / 1000
            await self.channel.send_message(
                f"🛑 *EV Scout Stopped*\n"
                f"Runtime: {runtime_seconds / 60:.1f} minutes\n"
                f"Alerts sent: {self.notifier.get_metrics()['alerts_sent']}"
            )

        await self.odds_feed.close()
        await self.stats_feed.close()
        await self.channel.close()
        self.logger.info("EV Scout stopped")

    def shutdown(self) -> None:
        """Trigger graceful shutdown."""
        self._shutdown_event.set()
        self._running = False
        self.scheduler.stop()
        self.poller.stop()

    async def _on_refreshed(self, sport: Sport, opportunities: list[Opportunity]) -> None:
        await self.notifier.process_opportunities(sport, opportunities)

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def _maintenance_loop(self) -> None:
        """Sweep old bets and save snapshots every sweep_interval seconds."""
        interval = self.settings.storage.sweep_interval
        while self._running:
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            except asyncio.CancelledError:
                break

            try:
                await self.ledger.sweep(self.settings.storage.retention_days)
                await self.store.save()
                self.logger.info(
                    "Maintenance complete",
                    scheduler=self.scheduler.get_metrics(),
                    ledger=self.ledger.get_metrics(),
                    notifier=self.notifier.get_metrics(),
                )
            except Exception as e:
                self.logger.error("Maintenance error", error=str(e))

    async def send_test_message(self) -> bool:
        await self.ledger.load()
        try:
            return await self.notifier.send_test_message()
        finally:
            await self.channel.close()


def main():
    """Main entry point."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_dir, json_logs=settings.json_logs)

    # Create bot
    try:
        bot = EVScoutBot(settings)
    except ValueError as e:
        print(f"❌ Configuration error: {e}")
        sys.exit(1)

    if "--test-message" in sys.argv[1:]:
        sent = asyncio.run(bot.send_test_message())
        print("✅ Test message sent" if sent else "❌ Test message failed")
        sys.exit(0 if sent else 1)

    # Setup signal handlers
    def signal_handler(sig, frame):
        print("\n🛑 Shutdown requested...")
        bot.shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Run
    try:
        asyncio.run(bot.start())
    except KeyboardInterrupt:
        print("\n⚠️ Interrupted")


if __name__ == "__main__":
    main()
