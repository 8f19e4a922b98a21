# teamchat/core/config.py
import os
from typing import List, Literal

from dotenv import load_dotenv


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Settings:
    """
    Setup environment variables.
        - STORAGE_BACKEND where users/projects live: "memory" or "redis"
        - JWT_SECRET the secret used to sign access tokens
        - GOOGLE_AI_KEY the key for the generative-text service; without it
          the mock assistant is used
        - ASSISTANT_MAX_RETRIES / ASSISTANT_RETRY_DELAY retry policy for a
          temporarily unavailable assistant
        - HISTORY_LIMIT how many recent messages each room keeps

    Keyword overrides win over the environment, e.g. ``Settings(HISTORY_LIMIT=5)``.
    """

    def __init__(self, **overrides) -> None:
        # Load environment variables from the .env file
        load_dotenv()

        self.STORAGE_BACKEND: Literal["memory", "redis"] = os.getenv("STORAGE_BACKEND", "memory")

        self.REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
        self.REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
        self.REDIS_ACCESS_KEY: str = os.getenv("REDIS_ACCESS_KEY", "")
        self.REDIS_SSL: bool = _env_bool("REDIS_SSL", "false")

        self.JWT_SECRET: str = os.getenv("JWT_SECRET", "dev-secret")
        self.JWT_ALGORITHM: str = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_DAYS: int = int(os.getenv("JWT_EXPIRE_DAYS", "7"))

        self.GOOGLE_AI_KEY: str = os.getenv("GOOGLE_AI_KEY", "")
        self.ASSISTANT_PROVIDER: str = os.getenv(
            "ASSISTANT_PROVIDER", "gemini" if self.GOOGLE_AI_KEY else "mock"
        )
        self.ASSISTANT_MODEL: str = os.getenv("ASSISTANT_MODEL", "gemini-1.5-flash")
        self.ASSISTANT_BASE_URL: str = os.getenv(
            "ASSISTANT_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
        )
        self.ASSISTANT_TIMEOUT: float = float(os.getenv("ASSISTANT_TIMEOUT", "30"))
        self.ASSISTANT_MAX_RETRIES: int = int(os.getenv("ASSISTANT_MAX_RETRIES", "2"))
        self.ASSISTANT_RETRY_DELAY: float = float(os.getenv("ASSISTANT_RETRY_DELAY", "2"))
        self.MOCK_ASSISTANT_DELAY: float = float(os.getenv("MOCK_ASSISTANT_DELAY", "1"))

        self.HISTORY_LIMIT: int = int(os.getenv("HISTORY_LIMIT", "100"))
        self.DEFAULT_ROOM: str = os.getenv("DEFAULT_ROOM", "general")

        # Seconds of silence before a socket / poller counts as gone
        self.WS_IDLE_TIMEOUT: float = float(os.getenv("WS_IDLE_TIMEOUT", "120"))
        self.POLL_IDLE_TIMEOUT: float = float(os.getenv("POLL_IDLE_TIMEOUT", "300"))
        self.SWEEP_INTERVAL: float = float(os.getenv("SWEEP_INTERVAL", "60"))

        self.CORS_ORIGINS: List[str] = [
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
            if origin.strip()
        ]

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)


settings = Settings()
