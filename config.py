import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        sql_echo: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.sql_echo = sql_echo


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Read ``LEDGER_*`` environment variables once per process."""
    database_url = os.getenv("LEDGER_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'ledger.db'}"
    return Settings(
        database_url=database_url,
        timezone=os.getenv("LEDGER_TIMEZONE", "UTC"),
        log_level=os.getenv("LEDGER_LOG_LEVEL", "INFO").upper(),
        sql_echo=_env_flag("LEDGER_SQL_ECHO"),
    )
