"""
Runtime settings.

Values come from the environment, optionally preloaded from a .env file with
python-dotenv. The store connection is read by SupabaseClient itself
(SUPABASE_DB_URL or SUPABASE_DB_HOST/PORT/NAME/USER/PASSWORD); this module
only records the URL when one is set.
"""

import logging
import os
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .schema import MAX_FILE_SIZE_MB, MIN_YEAR, YEARS_AHEAD

logger = logging.getLogger(__name__)


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass
class Settings:
    db_url: Optional[str] = None
    min_year: int = MIN_YEAR
    years_ahead: int = YEARS_AHEAD
    reference_year: int = date.today().year
    max_file_size_mb: int = MAX_FILE_SIZE_MB
    history_limit: int = 10
    log_level: str = "INFO"

    @property
    def max_year(self) -> int:
        return self.reference_year + self.years_ahead

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from a mapping (defaults to os.environ)."""
        env = os.environ if env is None else env
        return cls(
            db_url=env.get("SUPABASE_DB_URL") or None,
            min_year=_int_setting(env, "PARTSYNC_MIN_YEAR", MIN_YEAR),
            years_ahead=_int_setting(env, "PARTSYNC_YEARS_AHEAD", YEARS_AHEAD),
            reference_year=_int_setting(env, "PARTSYNC_REFERENCE_YEAR", date.today().year),
            max_file_size_mb=_int_setting(env, "PARTSYNC_MAX_FILE_SIZE_MB", MAX_FILE_SIZE_MB),
            history_limit=_int_setting(env, "PARTSYNC_HISTORY_LIMIT", 10),
            log_level=(env.get("PARTSYNC_LOG_LEVEL") or "INFO").upper(),
        )


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Load .env (if present) into the environment, then build Settings.

    Args:
        env_file: Path to a .env file. Defaults to ./.env when it exists.
    """
    env_path = Path(env_file) if env_file else Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)
        logger.debug(f"Loaded environment variables from {env_path}")
    elif env_file:
        logger.warning(f"No .env file found at {env_path}")
    return Settings.from_env()
