"""
Logging setup and refresh metrics log.
"""

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

import orjson
import structlog
from structlog.processors import TimeStamper


def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = "logs", json_logs: bool = True) -> None:
    """
    Configure structlog for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files (created if missing)
        json_logs: JSON lines when True, coloured console output otherwise
    """
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


class RefreshMetricsLogger:
    """
    One JSON line per refresh cycle, rotated daily.

    logs/refresh_2025-01-31.jsonl:
        {"timestamp_ms": ..., "sport": "nba", "status": "ok", "fixtures": 9, ...}
    """

    def __init__(self, log_dir: str = "logs"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.logger = structlog.get_logger("refresh_metrics")

    def _log_file(self) -> Path:
        today = datetime.now().strftime("%Y-%m-%d")
        return self.log_dir / f"refresh_{today}.jsonl"

    def log_refresh(self, sport: str, status: str, metrics: dict) -> None:
        """
        Append a refresh cycle entry.

        Args:
            sport: Sport value ("nba", "football")
            status: "ok", "error" or "skipped"
            metrics: Cycle summary (counts, duration, failures)
        """
        entry = {
            "timestamp_ms": int(time.time() * 1000),
            "sport": sport,
            "status": status,
            **metrics,
        }
        try:
            with open(self._log_file(), "ab") as f:
                f.write(orjson.dumps(entry) + b"\n")
        except OSError as e:
            self.logger.error("Could not write refresh metrics", error=str(e))
