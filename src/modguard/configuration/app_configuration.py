from __future__ import annotations
from pathlib import Path
import fcntl
from typing import Any, Dict
import yaml

from modguard.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()


class AppConfig:
    """File-lock based accessor around the YAML-based application configuration.

    The class caches contents of ``./config/app_config.yml`` and exposes typed
    engine defaults. Per-guild policy values are *not* stored here; they live in
    :class:`~modguard.datatypes.guild_policy.GuildPolicy` snapshots. Missing keys
    fall back to the defaults documented on each property.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = yaml.safe_load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            logger.warning("[APP CONFIGURATION] Config file %s not found, using defaults.", self.config_path)
            return {}
        except yaml.YAMLError as exc:
            logger.error("[APP CONFIGURATION] Failed to parse config %s: %s", self.config_path, exc)
            return {}

        if not isinstance(data, dict):
            return {}
        return data

    def _section_value(self, section: str, key: str, default: Any) -> Any:
        block = self._data.get(section, {})
        if not isinstance(block, dict):
            return default
        value = block.get(key, default)
        return default if value is None else value

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping."""
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the current cached configuration mapping (do not mutate)."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # High-level shortcuts
    # --------------------------
    @property
    def database_path(self) -> Path:
        """SQLite file used by the persistence layer."""
        return Path(str(self._section_value("database", "path", "./data/modguard.db"))).resolve()

    @property
    def near_threshold_ratio(self) -> float:
        """Fraction of a limit at which a ``warn`` verdict is produced (default 0.8)."""
        return float(self._section_value("thresholds", "near_threshold_ratio", 0.8))

    @property
    def strict_mode_factor(self) -> float:
        """Multiplier applied to every limit while strict mode is on (default 0.5)."""
        return float(self._section_value("thresholds", "strict_mode_factor", 0.5))

    @property
    def dispatch_max_attempts(self) -> int:
        """Total platform call attempts per dispatch (default 3)."""
        return int(self._section_value("dispatch", "max_attempts", 3))

    @property
    def dispatch_backoff_base_seconds(self) -> float:
        """Base delay of the exponential retry backoff (default 0.5s)."""
        return float(self._section_value("dispatch", "backoff_base_seconds", 0.5))

    @property
    def default_timeout_minutes(self) -> int:
        return int(self._section_value("dispatch", "default_timeout_minutes", 60))

    @property
    def appeal_cooldown_hours(self) -> float:
        return float(self._section_value("appeals", "cooldown_hours", 24))

    @property
    def appeal_abandonment_hours(self) -> float:
        """Reviewer inactivity after which an investigation reverts to pending (default 72h)."""
        return float(self._section_value("appeals", "abandonment_hours", 72))

    @property
    def queue_max_size(self) -> int:
        return int(self._section_value("queue", "max_size", 1000))

    @property
    def worker_pool_size(self) -> int:
        """Maximum number of guilds evaluated concurrently."""
        return int(self._section_value("queue", "worker_pool_size", 32))

    @property
    def sweep_interval_seconds(self) -> float:
        return float(self._section_value("maintenance", "sweep_interval_seconds", 300))

    @property
    def recent_actions_limit(self) -> int:
        return int(self._section_value("status", "recent_actions_limit", 10))


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)
