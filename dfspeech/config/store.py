"""
Hot-swappable configuration store.

The store publishes one immutable EngineConfig at a time. Reload parses the
file into a brand-new snapshot and swaps the reference under a short lock;
readers simply keep whatever snapshot they obtained, so a session created
under version N keeps version N's credentials and tuning after a reload.
A superseded snapshot is reclaimed by the interpreter once its last holder
drops it; live_versions() exposes which versions are still referenced.
"""

import threading
import weakref
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError
from prometheus_client import Counter

from dfspeech.config.credentials import inject_service_keys
from dfspeech.config.defaults import apply_general_defaults
from dfspeech.config.loaders import load_yaml_with_env_expansion, resolve_config_path
from dfspeech.config.models import AgentDirectory, EngineConfig, LogicalAgent
from dfspeech.config.normalization import normalize_agents, normalize_general
from dfspeech.errors import ConfigError
from dfspeech.logging_config import get_logger

logger = get_logger(__name__)

_CONFIG_RELOADS = Counter(
    "dfspeech_config_reloads_total",
    "Configuration reload attempts",
    labelnames=("outcome",),
)

_GENERAL_FIELDS = tuple(name for name in EngineConfig.model_fields if name not in ("version", "agents"))


def build_config(config_data: Dict[str, Any], version: int = 0) -> EngineConfig:
    """
    Build a snapshot from an already-parsed configuration mapping.

    Raises:
        ConfigError: If the mapping is structurally invalid
    """
    try:
        general = normalize_general(config_data)
        agents = normalize_agents(config_data)
        inject_service_keys(general, agents)
        apply_general_defaults(general)
        return EngineConfig(
            version=version,
            agents=AgentDirectory(agents=tuple(LogicalAgent(**entry) for entry in agents)),
            **{name: general[name] for name in _GENERAL_FIELDS if name in general},
        )
    except (TypeError, ValidationError) as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def load_config(path: Optional[str] = None, version: int = 0) -> EngineConfig:
    """
    Load and validate configuration from a YAML file.

    Phases:
      1. Resolve the path and load YAML with ${VAR} expansion
      2. Normalize the general and agent sections
      3. Load service key material (inline JSON or key file)
      4. Apply defaults, coercing bad values with a warning
      5. Validate into a frozen EngineConfig

    Raises:
        ConfigError: If the file is missing, unparseable or invalid
    """
    path = resolve_config_path(path)
    try:
        config_data = load_yaml_with_env_expansion(path)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(str(e)) from e
    return build_config(config_data, version=version)


class ConfigStore:
    """Process-wide holder of the current configuration snapshot."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = threading.Lock()
        self._version = 0
        self._current = EngineConfig(version=0)
        self._published: "weakref.WeakValueDictionary[int, EngineConfig]" = weakref.WeakValueDictionary()
        self._published[0] = self._current

    def current(self) -> EngineConfig:
        """Return the snapshot in effect; callers may hold it indefinitely."""
        with self._lock:
            return self._current

    def load(self) -> EngineConfig:
        """
        Initial load. A missing or invalid file falls back to defaults
        rather than preventing startup.
        """
        try:
            snapshot = load_config(self.path)
        except ConfigError as e:
            logger.warning("Configuration not loaded, using defaults", path=resolve_config_path(self.path), error=str(e))
            snapshot = EngineConfig()
        return self._publish(snapshot)

    def reload(self) -> bool:
        """
        Re-parse the file and publish the result.

        Returns:
            True when a new snapshot was published; False when loading failed
            and the previous snapshot remains in effect
        """
        try:
            snapshot = load_config(self.path)
        except ConfigError as e:
            _CONFIG_RELOADS.labels(outcome="failed").inc()
            logger.warning("Configuration reload failed, keeping previous configuration",
                           version=self.current().version, error=str(e))
            return False
        snapshot = self._publish(snapshot)
        _CONFIG_RELOADS.labels(outcome="ok").inc()
        logger.info("Configuration reloaded", version=snapshot.version, agents=len(snapshot.agents))
        return True

    def publish(self, snapshot: EngineConfig) -> EngineConfig:
        """Publish an externally built snapshot, stamping the next version."""
        return self._publish(snapshot)

    def live_versions(self) -> List[int]:
        """Versions of every published snapshot that is still referenced."""
        with self._lock:
            return sorted(self._published.keys())

    def _publish(self, snapshot: EngineConfig) -> EngineConfig:
        # stamping and swapping together keeps current().version increasing
        with self._lock:
            self._version += 1
            snapshot = snapshot.model_copy(update={"version": self._version})
            self._current = snapshot
            self._published[snapshot.version] = snapshot
            return snapshot
