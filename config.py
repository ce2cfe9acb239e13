import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        token_secret: str,
        token_max_age_hours: int,
        cors_origins: list[str],
        default_page_size: int,
        max_page_size: int,
        seed_system_categories: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.token_secret = token_secret
        self.token_max_age_hours = token_max_age_hours
        self.cors_origins = cors_origins
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.seed_system_categories = seed_system_categories


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("EXPENSES_TIMEZONE", "Europe/Berlin")
    token_secret = os.getenv(
        "EXPENSES_TOKEN_SECRET",
        "3f1c9a0e7b5d42c6a8e1f04b2d7c9e35a6b8d0f2c4e6a8b0d2f4a6c8e0b2d4f6",
    )
    token_max_age_hours = int(os.getenv("EXPENSES_TOKEN_MAX_AGE_HOURS", "168"))
    cors_origins = [
        origin.strip()
        for origin in os.getenv("EXPENSES_CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ]
    default_page_size = int(os.getenv("EXPENSES_DEFAULT_PAGE_SIZE", "20"))
    max_page_size = int(os.getenv("EXPENSES_MAX_PAGE_SIZE", "100"))
    seed_system_categories = _env_flag("EXPENSES_SEED_SYSTEM_CATEGORIES")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        token_secret=token_secret,
        token_max_age_hours=token_max_age_hours,
        cors_origins=cors_origins,
        default_page_size=default_page_size,
        max_page_size=max_page_size,
        seed_system_categories=seed_system_categories,
    )
