import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        data_dir: Path,
        database_url: str,
        storage_backend: str,
        json_path: Path,
        timezone: str,
        secret_key: str,
        session_max_age_hours: int,
        oauth_bridge_secret: str,
        default_usd_rate: Decimal,
    ) -> None:
        self.data_dir = data_dir
        self.database_url = database_url
        self.storage_backend = storage_backend
        self.json_path = json_path
        self.timezone = timezone
        self.secret_key = secret_key
        self.session_max_age_hours = session_max_age_hours
        self.oauth_bridge_secret = oauth_bridge_secret
        self.default_usd_rate = default_usd_rate


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    storage_backend = os.getenv("EXPENSES_STORAGE_BACKEND", "sql").lower()
    if storage_backend not in {"sql", "json"}:
        raise ValueError(f"Unsupported storage backend: {storage_backend}")
    json_path = Path(os.getenv("EXPENSES_JSON_PATH", str(data_dir / "db.json")))
    timezone = os.getenv("EXPENSES_TIMEZONE", "America/Argentina/Buenos_Aires")
    secret_key = os.getenv(
        "EXPENSES_SECRET_KEY",
        "5d0f3c41a7e24b6c9b1e8f27d4a63c90e2b7f15a8c4d6e9f0a1b3c5d7e9f1a2b",
    )
    session_max_age_hours = int(os.getenv("EXPENSES_SESSION_MAX_AGE_HOURS", "168"))
    oauth_bridge_secret = os.getenv("EXPENSES_OAUTH_BRIDGE_SECRET", "")
    default_usd_rate = Decimal(os.getenv("EXPENSES_DEFAULT_USD_RATE", "1000"))
    return Settings(
        data_dir=data_dir,
        database_url=database_url,
        storage_backend=storage_backend,
        json_path=json_path,
        timezone=timezone,
        secret_key=secret_key,
        session_max_age_hours=session_max_age_hours,
        oauth_bridge_secret=oauth_bridge_secret,
        default_usd_rate=default_usd_rate,
    )
