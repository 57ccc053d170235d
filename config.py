import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        secret_key: str,
        token_max_age_minutes: int,
        log_level: str,
        auto_create_schema: bool,
    ) -> None:
        self.database_url = database_url
        self.secret_key = secret_key
        self.token_max_age_minutes = token_max_age_minutes
        self.log_level = log_level
        self.auto_create_schema = auto_create_schema


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    secret_key = os.getenv(
        "FINANCE_SECRET_KEY",
        "0c5b7d1f4a9e2e6a1d8f3b7c9a0e4d2f6b1a8c3e5d7f9a2b4c6e8d0f1a3b5c7d",
    )
    token_max_age_minutes = int(os.getenv("FINANCE_TOKEN_MAX_AGE_MINUTES", "60"))
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    auto_create_schema = _env_flag("FINANCE_AUTO_CREATE_SCHEMA")
    return Settings(
        database_url=database_url,
        secret_key=secret_key,
        token_max_age_minutes=token_max_age_minutes,
        log_level=log_level,
        auto_create_schema=auto_create_schema,
    )
