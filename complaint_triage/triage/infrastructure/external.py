"""
Triage External Integrations
============================

Per-tenant YAML configuration with a watchdog file watcher, so priority
weights can be tuned without restarting the service.
"""

import threading
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from complaint_triage.core import ConfigurationException
from complaint_triage.shared.infrastructure.logging import get_logger
from complaint_triage.triage.domain.value_objects import PriorityWeights, TenantConfig

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for tenant config file changes."""

    def __init__(self, config_manager: "TenantConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info(f"Tenant config file changed: {event.src_path}")
            self.config_manager.reload()


class TenantConfigManager:
    """
    Thread-safe tenant configuration manager with hot-reload support.

    A reload that fails validation keeps the previous configuration.
    """

    def __init__(self):
        self._config: Optional[TenantConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> TenantConfig:
        """
        Initial configuration load.

        Raises:
            ConfigurationException: If the file exists but is invalid
        """
        self._path = path
        try:
            self._config = self._load_from_file(path)
        except (yaml.YAMLError, ValidationError, ValueError) as e:
            raise ConfigurationException(f"Invalid tenant config {path}: {e}")
        return self._config

    def _load_from_file(self, path: Path) -> TenantConfig:
        """Load and parse YAML config file."""
        if not path.exists():
            logger.warning(f"Tenant config file not found: {path}, using defaults")
            return TenantConfig()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        config = TenantConfig.from_yaml_dict(data)
        self._warn_on_drift(config)
        return config

    @staticmethod
    def _warn_on_drift(config: TenantConfig) -> None:
        weight_sets = {"default": config.default_weights, **config.tenant_weights}
        for name, weights in weight_sets.items():
            if weights.has_drift:
                logger.warning(
                    "Priority weights do not sum to 1.0",
                    extra={"tenant_id": name, "weight_sum": round(weights.total, 4)}
                )

    def reload(self) -> bool:
        """Reload configuration from file."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, ValueError) as e:
            logger.error(f"Failed to reload tenant config: {e}")
            return False

        with self._lock:
            self._config = new_config
        logger.info("Tenant configuration reloaded successfully")
        return True

    def start_watching(self) -> None:
        """Start watching the configuration file for changes."""
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info(
                f"Tenant config file doesn't exist, skipping file watch: {self._path}. "
                "Using default priority weights."
            )
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info(f"Started watching tenant config file: {self._path}")
        except OSError as e:
            # File watching not supported (e.g., in Docker containers)
            logger.warning(f"File watching not available, using static config: {e}")
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching configuration file (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def config(self) -> TenantConfig:
        """Get current configuration."""
        if self._config is None:
            raise RuntimeError("Tenant configuration not loaded")
        return self._config

    def weights_for(self, tenant_id: str) -> PriorityWeights:
        with self._lock:
            return self.config.weights_for(tenant_id)
