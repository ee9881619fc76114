"""
Server configuration loaded from environment variables.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()


def _optional_float(name: str) -> float | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    parsed = float(value)
    return parsed if parsed > 0 else None


class Config:
    """Server configuration."""

    # Gateway settings
    HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
    PORT: int = int(os.getenv("SERVER_PORT", "8765"))

    # Document store
    STORE_BACKEND: str = os.getenv("STORE_BACKEND", "memory")
    DATABASE_PATH: Path = Path(os.getenv("DATABASE_PATH", "./data/equation_challengers.db"))
    TRANSACTION_MAX_ATTEMPTS: int = int(os.getenv("TRANSACTION_MAX_ATTEMPTS", "5"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Text completion service (hints and game summaries)
    COMPLETION_BASE_URL: str = os.getenv("COMPLETION_BASE_URL", "")
    COMPLETION_MODEL: str = os.getenv("COMPLETION_MODEL", "gemini-2.0-flash")
    COMPLETION_API_KEY: str | None = os.getenv("COMPLETION_API_KEY") or None
    COMPLETION_TIMEOUT: float = float(os.getenv("COMPLETION_TIMEOUT", "30"))

    # Seconds a turn may wait on a human decision; None waits forever
    DECISION_TIMEOUT: float | None = _optional_float("DECISION_TIMEOUT")


config = Config()
settings = config
