import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        auth_secret: str,
        session_max_age_hours: int,
        cors_origins: list[str],
        summary_days: int,
        max_range_days: int,
        top_categories: int,
        import_max_bytes: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.auth_secret = auth_secret
        self.session_max_age_hours = session_max_age_hours
        self.cors_origins = cors_origins
        self.summary_days = summary_days
        self.max_range_days = max_range_days
        self.top_categories = top_categories
        self.import_max_bytes = import_max_bytes
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _split_origins(raw: str) -> list[str]:
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    auth_secret = os.getenv(
        "FINANCE_AUTH_SECRET",
        "3f9c1d7a52b84e0c9a6e2f4d8b1c7e05a9d3f6b2c8e4a1d7f0b5c9e3a6d2f8b4",
    )
    session_max_age_hours = int(os.getenv("FINANCE_SESSION_MAX_AGE_HOURS", "24"))
    cors_origins = _split_origins(
        os.getenv("FINANCE_CORS_ORIGINS", "http://localhost:3000")
    )
    summary_days = int(os.getenv("FINANCE_SUMMARY_DAYS", "30"))
    max_range_days = max(1, int(os.getenv("FINANCE_MAX_RANGE_DAYS", "366")))
    top_categories = int(os.getenv("FINANCE_TOP_CATEGORIES", "4"))
    import_max_bytes = int(os.getenv("FINANCE_IMPORT_MAX_BYTES", str(5 * 1024 * 1024)))
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        auth_secret=auth_secret,
        session_max_age_hours=session_max_age_hours,
        cors_origins=cors_origins,
        summary_days=summary_days,
        max_range_days=max_range_days,
        top_categories=top_categories,
        import_max_bytes=import_max_bytes,
        log_level=log_level,
    )
