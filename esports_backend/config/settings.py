"""
Engine Settings

Centralized configuration for the tournament engine.
All values are loaded from environment variables (a .env file is honoured).
"""
import os
from typing import Dict

from dotenv import load_dotenv

load_dotenv()


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean value from environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on', 'enabled')


def get_int_env(key: str, default: int) -> int:
    """Get an integer value from environment variable."""
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {key} must be an integer, got {value!r}")


class Settings:
    """
    Runtime settings for the tournament engine.

    To add a new setting:
    1. Add it here as a class property
    2. Load it from an environment variable with a sane default
    3. Read it through `settings.<NAME>` at call time
    """

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./tournaments.db")
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Lifecycle windows (minutes)
    WINNER_COOLDOWN_MINUTES: int = get_int_env("WINNER_COOLDOWN_MINUTES", 30)
    AUTO_CANCEL_AFTER_MINUTES: int = get_int_env("AUTO_CANCEL_AFTER_MINUTES", 60)
    LEAVE_CUTOFF_MINUTES: int = get_int_env("LEAVE_CUTOFF_MINUTES", 30)

    # Background auto-cancel sweep
    FEATURE_AUTO_CANCEL_SWEEP: bool = get_bool_env("FEATURE_AUTO_CANCEL_SWEEP", True)
    AUTO_CANCEL_SWEEP_INTERVAL_SECONDS: int = get_int_env("AUTO_CANCEL_SWEEP_INTERVAL_SECONDS", 300)

    # Prize pool: entry fee x joined players x percent
    PRIZE_POOL_PERCENT: int = get_int_env("PRIZE_POOL_PERCENT", 70)

    # Bracket layout
    ROOM_SCHEDULE_GAP_MINUTES: int = get_int_env("ROOM_SCHEDULE_GAP_MINUTES", 15)
    DEFAULT_ROOM_CAPACITY: int = get_int_env("DEFAULT_ROOM_CAPACITY", 12)

    # Teams per room, keyed by normalized game name
    GAME_ROOM_CAPACITY: Dict[str, int] = {
        "BGMI": 25,
        "FREE_FIRE": 12,
    }

    JOIN_RATE_LIMIT: str = os.getenv("JOIN_RATE_LIMIT", "20/minute")

    # Comma-separated CORS origins
    ALLOWED_ORIGINS: str = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173")

    @classmethod
    def get_all_settings(cls) -> Dict[str, object]:
        """Get all settings as a dictionary (secrets excluded)."""
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if key.isupper() and key != "DATABASE_URL"
        }


settings = Settings()
