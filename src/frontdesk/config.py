"""Startup configuration.

Settings come from environment variables (a local ``.env`` is loaded by the
server).  ``validate_config`` runs before the server accepts connections so a
malformed value fails loudly at startup instead of mid-call.
"""

import logging
import os
import sys
from dataclasses import dataclass

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# name -> (Settings attribute, parser, default)
NUMERIC_VARS = {
    "SESSION_MAX_AGE_MINUTES": ("session_max_age_minutes", float, 30.0),
    "SESSION_CLEANUP_INTERVAL_S": ("cleanup_interval_s", float, 60.0),
    "HISTORY_LIMIT": ("history_limit", int, 20),
    "PORT": ("port", int, 8765),
}

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class Settings:
    log_level: str = "INFO"
    session_max_age_minutes: float = 30.0
    cleanup_interval_s: float = 60.0
    history_limit: int = 20
    port: int = 8765


def _config_errors() -> list[str]:
    errors = []
    for var, (_, parser, _default) in NUMERIC_VARS.items():
        raw = os.getenv(var)
        if not raw:
            continue
        try:
            value = parser(raw)
        except ValueError:
            errors.append(f"{var}={raw!r} is not a valid {parser.__name__}")
            continue
        if value <= 0:
            errors.append(f"{var} must be positive, got {raw}")

    history_limit = os.getenv("HISTORY_LIMIT")
    if history_limit and history_limit.isdigit() and int(history_limit) < 2:
        errors.append("HISTORY_LIMIT must be at least 2")

    level = os.getenv("LOG_LEVEL", "INFO").upper()
    if level not in LOG_LEVELS:
        errors.append(f"LOG_LEVEL={level!r} is not one of {', '.join(sorted(LOG_LEVELS))}")
    return errors


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any value is malformed.
    """
    errors = _config_errors()
    if errors:
        print(
            "\nFATAL: Invalid configuration:\n  "
            + "\n  ".join(errors)
            + "\n\nFix them in .env (local) or the deployment secrets.\n",
            file=sys.stderr,
        )
        sys.exit(1)


def load_settings() -> Settings:
    """Read settings from the environment, falling back to defaults for unset values."""
    settings = Settings(log_level=os.getenv("LOG_LEVEL", "INFO").upper())
    for var, (attr, parser, default) in NUMERIC_VARS.items():
        raw = os.getenv(var)
        setattr(settings, attr, parser(raw) if raw else default)
    return settings


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logger.debug(f"Logging configured at {level}")
