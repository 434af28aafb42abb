"""Configuration: alias store, config directory and environment overrides."""

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from .exceptions import S4ConfigError
from .utils import DEFAULT_WATCH_INTERVAL

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "S4_CONFIG_DIR"
WATCH_INTERVAL_ENV = "S4_SYNC_WATCH_INTERVAL_SEC"
CONFIG_FILE_NAME = "config.json"


@dataclass
class AliasConfig:
    """Connection settings of one named S3 endpoint."""

    endpoint: str
    access_key: str
    secret_key: str
    region: str = "us-east-1"
    path_style: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "AliasConfig":
        try:
            return cls(
                endpoint=data["endpoint"],
                access_key=data["access_key"],
                secret_key=data["secret_key"],
                region=data.get("region", "us-east-1"),
                path_style=bool(data.get("path_style", False)),
            )
        except KeyError as e:
            raise S4ConfigError(f"Alias entry is missing field {e}") from e

    def to_dict(self) -> dict:
        return asdict(self)


class Config:
    """Configuration manager for pys4.

    Aliases live in ``<config dir>/config.json``. The directory defaults to
    ``~/.config/s4`` and can be moved with ``S4_CONFIG_DIR`` or ``--config-dir``.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        self._config_dir = Path(config_dir) if config_dir else None

    @property
    def config_dir(self) -> Path:
        if self._config_dir is not None:
            return self._config_dir
        env_dir = os.environ.get(CONFIG_DIR_ENV)
        if env_dir:
            return Path(env_dir)
        return Path.home() / ".config" / "s4"

    @config_dir.setter
    def config_dir(self, value: Optional[Path]) -> None:
        self._config_dir = Path(value) if value else None

    @property
    def config_file(self) -> Path:
        return self.config_dir / CONFIG_FILE_NAME

    def _load(self) -> dict:
        if not self.config_file.exists():
            return {}
        try:
            with open(self.config_file, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise S4ConfigError(f"Invalid config file {self.config_file}: {e}") from e
        if not isinstance(data, dict):
            raise S4ConfigError(f"Invalid config file {self.config_file}")
        return data

    def _save(self, data: dict) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
        # Secrets live in this file
        self.config_file.chmod(0o600)
        logger.debug(f"Saved config to {self.config_file}")

    def load_aliases(self) -> dict[str, AliasConfig]:
        """Load every configured alias, sorted by name."""
        raw = self._load().get("aliases", {})
        return {name: AliasConfig.from_dict(raw[name]) for name in sorted(raw)}

    def get_alias(self, name: str) -> AliasConfig:
        """Look up one alias.

        Raises:
            S4ConfigError: If the alias does not exist
        """
        aliases = self.load_aliases()
        if name not in aliases:
            raise S4ConfigError(f"Unknown alias: {name}")
        return aliases[name]

    def save_alias(self, name: str, alias: AliasConfig) -> None:
        if not name or "/" in name:
            raise S4ConfigError(f"Invalid alias name: {name!r}")
        data = self._load()
        data.setdefault("aliases", {})[name] = alias.to_dict()
        self._save(data)

    def remove_alias(self, name: str) -> bool:
        """Remove an alias.

        Returns:
            True if the alias existed
        """
        data = self._load()
        aliases = data.get("aliases", {})
        if name not in aliases:
            return False
        del aliases[name]
        self._save(data)
        return True

    @property
    def watch_interval(self) -> float:
        """Seconds between watch cycles.

        Raises:
            S4ConfigError: If the environment override is not a positive number
        """
        raw = os.environ.get(WATCH_INTERVAL_ENV)
        if raw is None or raw.strip() == "":
            return DEFAULT_WATCH_INTERVAL
        try:
            value = float(raw)
        except ValueError as e:
            raise S4ConfigError(f"{WATCH_INTERVAL_ENV} must be a number: {raw!r}") from e
        if value <= 0:
            raise S4ConfigError(f"{WATCH_INTERVAL_ENV} must be positive: {raw!r}")
        return value


config = Config()
