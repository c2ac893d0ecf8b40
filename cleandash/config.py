"""Runtime configuration for the cleaning dashboard."""

from __future__ import annotations

import logging
import os
from typing import Any

from dotenv import load_dotenv

load_dotenv()

SETTINGS: dict[str, Any] = {
    "database_path": os.getenv("DATABASE_PATH", "cleandash.db"),
    "secret_key": os.getenv("SECRET_KEY", "cleandash-secret"),
    # Channel used for bookings entered by staff from the dashboard
    "channel_code": os.getenv("CHANNEL_CODE", "staff"),
    "currency": os.getenv("CURRENCY", "QAR"),
    "regular_daily_hours": float(os.getenv("REGULAR_DAILY_HOURS", "8")),
    "log_level": os.getenv("LOG_LEVEL", "INFO"),
}


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the process."""

    logging.basicConfig(
        level=(level or SETTINGS["log_level"]).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


__all__ = ["SETTINGS", "configure_logging"]
