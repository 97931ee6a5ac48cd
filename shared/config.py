# shared/config.py
import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_DATABASE_URL = "postgresql://localhost:5432/business_forge"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class AppConfig:
    """Runtime settings read from the environment"""
    database_url: Optional[str] = None
    storage_backend: str = "memory"
    log_level: str = "INFO"
    json_logs: bool = True
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False
    event_queue_size: int = 256
    staleness_history_size: int = 500
    agent_latency_seconds: float = 0.0
    db_pool_min_size: int = 2
    db_pool_max_size: int = 10

    def __post_init__(self):
        if self.storage_backend not in ("postgres", "memory"):
            raise ValueError(f"Unknown storage backend: {self.storage_backend}")
        if self.event_queue_size < 1:
            raise ValueError("EVENT_QUEUE_SIZE must be positive")
        if self.staleness_history_size < 1:
            raise ValueError("STALENESS_HISTORY_SIZE must be positive")

    @classmethod
    def from_env(cls) -> "AppConfig":
        database_url = os.getenv("DATABASE_URL")
        # Without a database URL the process keeps everything in memory
        default_backend = "postgres" if database_url else "memory"

        return cls(
            database_url=database_url or DEFAULT_DATABASE_URL,
            storage_backend=os.getenv("STORAGE_BACKEND", default_backend).lower(),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            json_logs=_env_bool("JSON_LOGS", "true"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            reload=_env_bool("RELOAD", "false"),
            event_queue_size=int(os.getenv("EVENT_QUEUE_SIZE", "256")),
            staleness_history_size=int(os.getenv("STALENESS_HISTORY_SIZE", "500")),
            agent_latency_seconds=float(os.getenv("AGENT_LATENCY_SECONDS", "0")),
            db_pool_min_size=int(os.getenv("DB_POOL_MIN_SIZE", "2")),
            db_pool_max_size=int(os.getenv("DB_POOL_MAX_SIZE", "10")),
        )
