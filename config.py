import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        horizon_months: int,
        snooze_days: int,
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.horizon_months = horizon_months
        self.snooze_days = snooze_days
        self.scheduler_enabled = scheduler_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("PANIC_POCKET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "panic_pocket.db"
    database_url = os.getenv("PANIC_POCKET_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("PANIC_POCKET_TIMEZONE", "Europe/Berlin")
    horizon_months = int(os.getenv("PANIC_POCKET_HORIZON_MONTHS", "12"))
    snooze_days = int(os.getenv("PANIC_POCKET_SNOOZE_DAYS", "3"))
    scheduler_enabled = _env_flag("PANIC_POCKET_SCHEDULER_ENABLED", "true")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        horizon_months=horizon_months,
        snooze_days=snooze_days,
        scheduler_enabled=scheduler_enabled,
    )
