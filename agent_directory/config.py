"""Runtime configuration, read from the environment (and .env if present)."""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

DEFAULT_API_URL = "https://dummyjson.com/"
DEFAULT_PROBE_URL = "https://dummyjson.com/test"


@dataclass
class Config:
    api_url: str = DEFAULT_API_URL
    db_path: str = "agent_directory.db"
    settings_db_path: str = "agent_directory_settings.db"
    settings_backend: str = "sqlite"
    http_timeout: float = 30.0
    refresh_interval_minutes: int = 15
    probe_url: str = DEFAULT_PROBE_URL
    connectivity_poll_seconds: float = 10.0
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            api_url=os.getenv("AGENT_DIRECTORY_API_URL", DEFAULT_API_URL),
            db_path=os.getenv("DB_PATH", "agent_directory.db"),
            settings_db_path=os.getenv("SETTINGS_DB_PATH", "agent_directory_settings.db"),
            settings_backend=os.getenv("SETTINGS_BACKEND", "sqlite").lower(),
            http_timeout=float(os.getenv("HTTP_TIMEOUT", "30")),
            refresh_interval_minutes=int(os.getenv("REFRESH_INTERVAL_MINUTES", "15")),
            probe_url=os.getenv("CONNECTIVITY_PROBE_URL", DEFAULT_PROBE_URL),
            connectivity_poll_seconds=float(os.getenv("CONNECTIVITY_POLL_SECONDS", "10")),
            log_level=os.getenv("LOG_LEVEL", "WARNING").upper(),
        )
