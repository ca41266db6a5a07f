"""
FORMA Configuration

Environment variables and application settings.
"""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "FORMA"
    DEBUG: bool = True
    LOG_LEVEL: str = "DEBUG"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:3001"]

    # Form analysis engine
    FRAME_HISTORY_SIZE: int = 30  # ~1 second at 30 fps
    PHASE_TREND_THRESHOLD: float = 0.01
    PHASE_DEBOUNCE_FRAMES: int = 1  # 1 = raw classifier, no smoothing

    # Sessions
    SESSION_SCORE_HISTORY: int = 1000
    SESSION_MAX_COMPLETED_PER_USER: int = 20  # older completed sessions are evicted

    # Safety monitor
    SAFETY_MAX_ALERTS: int = 10
    SAFETY_MAX_DURATION_SECONDS: int = 1800

    # Remote coaching service (local fallback when unset)
    COACH_API_URL: str = ""
    COACH_API_KEY: str = ""
    COACH_TIMEOUT_SECONDS: float = 15.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
