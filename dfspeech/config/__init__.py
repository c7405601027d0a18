"""
Configuration package for the speech engine.

This package contains:
- models: frozen snapshot, logical agent and agent directory models
- loaders: YAML file loading and path resolution
- credentials: service key loading (inline JSON or key file)
- defaults: default value application and coercion
- normalization: general/agent section normalization
- store: load_config and the hot-swappable ConfigStore
"""

from dfspeech.config.models import (
    AgentCredentials,
    AgentDirectory,
    EngineConfig,
    LogicalAgent,
)
from dfspeech.config.store import ConfigStore, build_config, load_config

__all__ = [
    'AgentCredentials',
    'AgentDirectory',
    'EngineConfig',
    'LogicalAgent',
    'ConfigStore',
    'build_config',
    'load_config',
]
