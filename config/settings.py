"""
Configuration settings for the EV Scout value bet bot.
Uses pydantic-settings for validation and environment variable loading.

Each section reads its own prefixed variables (OPTIC_ODDS_API_KEY,
TELEGRAM_BOT_TOKEN, NBA_MIN_EV_PERCENT, ...); nested overrides through the
main settings also work (TELEGRAM__MIN_EV=10).
"""

from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def split_csv(value: str) -> list[str]:
    """Comma-separated setting to a clean list."""
    return [item.strip() for item in value.split(",") if item.strip()]


class OpticOddsSettings(BaseSettings):
    """OpticOdds fixtures + odds feed."""

    model_config = SettingsConfigDict(env_prefix="OPTIC_ODDS_", env_file=".env", extra="ignore")

    api_key: str = Field(default="", description="OpticOdds API key")
    base_url: str = "https://api.opticodds.com/api/v3"
    timeout: float = 15.0
    requests_per_minute: int = 120
    max_bookmakers_per_request: int = 5  # API cap on sportsbook params
    batch_delay: float = 0.1             # Seconds between bookmaker batches


class FootballDataSettings(BaseSettings):
    """football-data.org team statistics (forecast strategy)."""

    model_config = SettingsConfigDict(env_prefix="FOOTBALL_DATA_", env_file=".env", extra="ignore")

    api_key: str = Field(default="", description="football-data.org API token")
    base_url: str = "https://api.football-data.org/v4"
    request_spacing: float = 6.5  # Free tier: 10 requests/minute
    cache_ttl_hours: float = 6.0
    window: int = 15              # Finished matches per team average


class SportSettings(BaseSettings):
    """Shared per-sport refresh and evaluation settings."""

    enabled: bool = True

    # Comma-separated lists
    leagues: str = ""
    bookmakers: str = ""
    playable_bookmakers: str = ""
    reference_bookmakers: str = Field(default="", description="Empty = every non-playable bookmaker")

    # EV thresholds
    min_ev_percent: float = 3.0
    max_odds: float = 10.0
    min_reference_books: int = 1
    min_forecast_games: int = 3

    # De-vig
    devig_method: str = "multiplicative"
    line_tolerance: float = 0.5

    # Fixture window and pacing
    hours_ahead: float = 24.0
    fixture_delay: float = 0.2
    league_delay: float = 0.0

    # Only keep markets containing this token (empty = all)
    market_filter: str = ""

    # Forecast strategy for match totals
    use_forecast: bool = False

    @field_validator("devig_method")
    @classmethod
    def validate_devig_method(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in ("multiplicative", "power"):
            raise ValueError("devig_method must be 'multiplicative' or 'power'")
        return value

    @property
    def league_list(self) -> list[str]:
        return split_csv(self.leagues)

    @property
    def bookmaker_list(self) -> list[str]:
        return split_csv(self.bookmakers)

    @property
    def playable_list(self) -> list[str]:
        return split_csv(self.playable_bookmakers)

    @property
    def reference_list(self) -> list[str]:
        return split_csv(self.reference_bookmakers)


class NBASettings(SportSettings):
    """NBA player props (de-vig against sharp books)."""

    model_config = SettingsConfigDict(env_prefix="NBA_", env_file=".env", extra="ignore")

    bookmakers: str = (
        "pinnacle,bet365,unibet,unibet_denmark_,betano,draftkings,fanduel,betmgm,"
        "caesars,betrivers,fanatics,prizepicks,fliff,betway,bet99"
    )
    playable_bookmakers: str = "bet365,unibet_denmark_,betano"
    fixture_delay: float = 0.2
    market_filter: str = "player_"


class FootballSettings(SportSettings):
    """European football, top five leagues."""

    model_config = SettingsConfigDict(env_prefix="FOOTBALL_", env_file=".env", extra="ignore")

    leagues: str = (
        "england_-_premier_league,spain_-_la_liga,germany_-_bundesliga,"
        "italy_-_serie_a,france_-_ligue_1"
    )
    bookmakers: str = (
        "pinnacle,bet365,betano,unibet_denmark_,draftkings,fanduel,betmgm,caesars,"
        "betrivers,superbet,betsson,betsafe,888sport,betway,william_hill,fanatics,"
        "bovada,betonline,betfair,bwin"
    )
    playable_bookmakers: str = "betano,unibet_denmark_,bet365"
    fixture_delay: float = 0.3
    league_delay: float = 0.5

    league_names: dict[str, str] = Field(default_factory=lambda: {
        "england_-_premier_league": "Premier League",
        "spain_-_la_liga": "La Liga",
        "germany_-_bundesliga": "Bundesliga",
        "italy_-_serie_a": "Serie A",
        "france_-_ligue_1": "Ligue 1",
    })


class SchedulerSettings(BaseSettings):
    """Refresh timers."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", env_file=".env", extra="ignore")

    refresh_interval: float = 300.0    # 5 minutes
    nba_offset: float = 0.0
    football_offset: float = 120.0     # Stagger so both sports never hit OpticOdds at once
    progress_clear_delay: float = 2.0
    shutdown_timeout: float = 5.0      # Wait for in-flight cycles before aborting them


class TelegramSettings(BaseSettings):
    """Telegram alerts and operator buttons."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", env_file=".env", extra="ignore")

    bot_token: str = Field(default="", description="Telegram bot token")
    chat_id: str = Field(default="", description="Chat to send alerts to")
    enabled: bool = True

    # Alert criteria
    min_ev: float = 8.0
    max_odds: float = 3.5
    bookmakers: str = "bet365"
    sports: str = "nba"
    cooldown_minutes: float = 10.0
    max_alerts_per_cycle: int = 5
    send_delay: float = 2.0
    max_tracked_hours: Optional[float] = None  # None = tracked bets stay suppressed

    # Action handling
    ack_timeout: float = 1.0
    storage_timeout: float = 5.0
    recent_event_capacity: int = 100
    poll_timeout: float = 10.0

    display_timezone: str = "UTC"

    @property
    def bookmaker_list(self) -> list[str]:
        return [b.lower() for b in split_csv(self.bookmakers)]

    @property
    def sport_list(self) -> list[str]:
        return [s.lower() for s in split_csv(self.sports)]

    @property
    def is_configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)


class StorageSettings(BaseSettings):
    """Local persistence."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_", env_file=".env", extra="ignore")

    bets_path: str = "data/telegram_bets.json"
    snapshot_path: str = "data/snapshots.json"
    retention_days: float = 30.0
    sweep_interval: float = 3600.0


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore"
    )

    # Debug settings
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"
    json_logs: bool = True

    # Sub-settings
    optic_odds: OpticOddsSettings = Field(default_factory=OpticOddsSettings)
    football_data: FootballDataSettings = Field(default_factory=FootballDataSettings)
    nba: NBASettings = Field(default_factory=NBASettings)
    football: FootballSettings = Field(default_factory=FootballSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Return the global settings instance."""
    return settings
