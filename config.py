import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        reconcile_hour: int,
        reconcile_minute: int,
        reconcile_interval_minutes: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.reconcile_hour = reconcile_hour
        self.reconcile_minute = reconcile_minute
        self.reconcile_interval_minutes = reconcile_interval_minutes
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BREADWINNER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "breadwinner.db"
    database_url = os.getenv("BREADWINNER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("BREADWINNER_TIMEZONE", "Europe/Berlin")
    reconcile_hour = int(os.getenv("BREADWINNER_RECONCILE_HOUR", "3"))
    reconcile_minute = int(os.getenv("BREADWINNER_RECONCILE_MINUTE", "15"))
    reconcile_interval_minutes = int(
        os.getenv("BREADWINNER_RECONCILE_INTERVAL_MINUTES", "60")
    )
    log_level = os.getenv("BREADWINNER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        reconcile_hour=reconcile_hour,
        reconcile_minute=reconcile_minute,
        reconcile_interval_minutes=reconcile_interval_minutes,
        log_level=log_level,
    )
