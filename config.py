import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        fixed_series_months: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.fixed_series_months = fixed_series_months
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BOOKKEEPER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("BOOKKEEPER_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "bookkeeper.db"
        database_url = f"sqlite:///{default_db}"
    timezone = os.getenv("BOOKKEEPER_TIMEZONE", "America/Sao_Paulo")
    # Horizon used when materializing open-ended "fixed monthly" series.
    fixed_series_months = int(os.getenv("BOOKKEEPER_FIXED_SERIES_MONTHS", "60"))
    if fixed_series_months < 1:
        raise ValueError("BOOKKEEPER_FIXED_SERIES_MONTHS must be positive")
    log_level = os.getenv("BOOKKEEPER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        fixed_series_months=fixed_series_months,
        log_level=log_level,
    )
