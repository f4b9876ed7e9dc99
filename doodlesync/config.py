"""
doodlesync configuration, read from the environment when a Settings instance
is built.
"""

from __future__ import annotations

import os


class Settings:
    """Application settings from environment variables."""

    def __init__(self, **overrides) -> None:
        # Database
        self.MONGO_URL: str = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
        self.MONGO_DB_NAME: str = os.environ.get("MONGO_DB_NAME", "doodlesync")

        # Realtime (empty -> in-process bus)
        self.REDIS_URL: str = os.environ.get("REDIS_URL", "")

        # Sync behaviour
        self.RECONNECT_DELAY_SECONDS: float = float(os.environ.get("RECONNECT_DELAY_SECONDS", "2"))
        self.MAX_CONVERSATION_SUBSCRIPTIONS: int = int(os.environ.get("MAX_CONVERSATION_SUBSCRIPTIONS", "30"))
        self.THREAD_PAGE_SIZE: int = int(os.environ.get("THREAD_PAGE_SIZE", "50"))
        self.OLDER_PAGE_SIZE: int = int(os.environ.get("OLDER_PAGE_SIZE", "30"))
        self.CACHE_FRESHNESS_SECONDS: float = float(os.environ.get("CACHE_FRESHNESS_SECONDS", "30"))

        # Application
        self.LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)
