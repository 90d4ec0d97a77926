import logging
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from models import AppConfig

logger = logging.getLogger(__name__)

CONFIG_KEY = "hotel_pro_config_v2"


class ConfigStore:
    """
    Owns the application configuration and its durable copy.

    The record is read once by `load()` and rewritten on every change. Readers
    take `store.config`, which is an immutable snapshot, so a request that is
    already running keeps the configuration it started with.
    """

    def __init__(self, storage_dir):
        self.path = Path(storage_dir) / f"{CONFIG_KEY}.json"
        self._config = AppConfig()

    @property
    def config(self) -> AppConfig:
        return self._config

    def load(self) -> AppConfig:
        if not self.path.exists():
            self._config = AppConfig()
            return self._config
        try:
            self._config = AppConfig.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError, ValidationError) as e:
            logger.error("Failed to parse stored config %s: %s", self.path, e)
            self._config = AppConfig()
        return self._config

    def complete_setup(self, **fields) -> AppConfig:
        fields.setdefault("last_verified_at", datetime.now(timezone.utc))
        fields["is_configured"] = True
        self._config = AppConfig().merged(**fields)
        self._write()
        logger.info("Setup completed (data file: %s)", self._config.data_file_name or "none")
        return self._config

    def update(self, **updates) -> AppConfig:
        if not self._config.is_configured:
            logger.warning("Ignoring config update before setup is complete")
            return self._config
        self._config = self._config.merged(**updates)
        self._write()
        return self._config

    def clear(self) -> None:
        self._config = AppConfig()
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(self._config.to_json(), encoding="utf-8")
