import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_MODEL = "gemini-2.5-flash"


@dataclass(frozen=True)
class Settings:
    """Process-wide settings read from the environment (and a `.env` file when present)."""
    fallback_api_key: Optional[str] = None
    model_name: str = DEFAULT_MODEL
    retries: int = 1
    storage_dir: Path = Path.home() / ".hotel_insight"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        retries = os.getenv("GEMINI_RETRIES", "1")
        try:
            retries = max(1, int(retries))
        except ValueError:
            retries = 1
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        if not isinstance(logging.getLevelName(log_level), int):
            log_level = "INFO"
        home = os.getenv("HOTEL_INSIGHT_HOME")
        return cls(
            fallback_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or None,
            model_name=os.getenv("GEMINI_MODEL") or DEFAULT_MODEL,
            retries=retries,
            storage_dir=Path(home).expanduser() if home else Path.home() / ".hotel_insight",
            log_level=log_level,
        )
