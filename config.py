import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        identity_secret: str,
        identity_max_age_hours: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.identity_secret = identity_secret
        self.identity_max_age_hours = identity_max_age_hours
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINHASH_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finhash.db"
    database_url = os.getenv("FINHASH_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINHASH_TIMEZONE", "UTC")
    identity_secret = os.getenv(
        "FINHASH_IDENTITY_SECRET",
        "6d1f0c9a4be24f27a1d35c0e8e6a2f4b9c7d58e1a0b3c4d5e6f708192a3b4c5d",
    )
    identity_max_age_hours = int(os.getenv("FINHASH_IDENTITY_MAX_AGE_HOURS", "24"))
    log_level = os.getenv("FINHASH_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        identity_secret=identity_secret,
        identity_max_age_hours=identity_max_age_hours,
        log_level=log_level,
    )
