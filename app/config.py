"""Configuration settings for the heatmap HTTP service."""
import os
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _split(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


class Settings:
    """Application settings loaded from environment variables.

    Engine knobs (provider, API key, intervals) live in ``heatmap.core.config``.
    """

    # Server settings
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", 8000))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

    # Browser front-ends allowed to call the API
    CORS_ORIGINS: List[str] = _split(os.getenv("CORS_ORIGINS", "*"))

    # One JSON object per log line instead of the console renderer
    JSON_LOGS: bool = os.getenv("JSON_LOGS", "false").lower() == "true"

    # Run the engine loops on startup; off for tests and one-off tooling
    START_ENGINE: bool = os.getenv("START_ENGINE", "true").lower() == "true"


settings = Settings()
