"""
Runtime configuration for the Sneuz backend, read from the environment (.env supported).
"""
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int, low: int, high: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else default
    except ValueError:
        value = default
    return max(low, min(value, high))


def _origins() -> list[str]:
    raw = os.getenv("SNEUZ_CORS_ORIGINS") or "http://localhost:3000"
    return [o.strip() for o in raw.split(",") if o.strip()]


@dataclass
class Settings:
    database_url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///sneuz.db"))
    store_backend: str = field(default_factory=lambda: (os.getenv("SNEUZ_STORE") or "sql").strip().lower())
    supabase_url: str = field(default_factory=lambda: (os.getenv("SUPABASE_URL") or "").rstrip("/"))
    supabase_key: str = field(default_factory=lambda: (os.getenv("SUPABASE_ANON_KEY") or "").strip())
    shared_state_dir: str = field(default_factory=lambda: os.getenv("SNEUZ_SHARED_STATE_DIR", "./.sneuz/shared"))
    recent_limit: int = field(default_factory=lambda: _int_env("SNEUZ_RECENT_LIMIT", 60, 1, 200))
    cors_origins: list[str] = field(default_factory=_origins)
    log_level: str = field(default_factory=lambda: (os.getenv("LOG_LEVEL") or "INFO").upper())
    export_path: str = field(default_factory=lambda: os.getenv("SNEUZ_EXPORT_PATH", "./.sneuz/health_export.jsonl"))


def get_settings() -> Settings:
    return Settings()
