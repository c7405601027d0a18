"""
Configuration normalization.

The YAML file has a `general` section and any number of logical agent
sections. Agents are normally listed under `agents:`, but any other top-level
mapping that carries a project_id is accepted as an agent too, so files
converted section-for-section from the INI-style layout keep working.

This module turns both forms into:

    {"general": {...}, "agents": [{"name": ..., "project_id": ..., ...}, ...]}
"""

from typing import Any, Dict, List

import structlog

logger = structlog.get_logger(__name__)

GENERAL_SECTION = "general"
AGENTS_SECTION = "agents"
RESERVED_SECTIONS = {GENERAL_SECTION, AGENTS_SECTION, "logging"}

AGENT_KEYS = ("project_id", "service_key", "endpoint")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _normalize_agent(name: str, section: Dict[str, Any]) -> Dict[str, str]:
    entry = {"name": str(name)}
    for key in AGENT_KEYS:
        entry[key] = _as_text(section.get(key))
    return entry


def normalize_general(config_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return the `general` section as a fresh dict.

    Raises:
        TypeError: If `general` is present but not a mapping
    """
    general = config_data.get(GENERAL_SECTION)
    if general is None:
        return {}
    if not isinstance(general, dict):
        raise TypeError(f"'{GENERAL_SECTION}' must be a mapping, got {type(general).__name__}")
    return dict(general)


def normalize_agents(config_data: Dict[str, Any]) -> List[Dict[str, str]]:
    """
    Collect logical agent sections in file order.

    Sections without a project_id are skipped with a warning; later
    definitions of the same (case-insensitive) name replace earlier ones.

    Raises:
        TypeError: If `agents` is not a mapping, or one of its entries is not
                   a mapping
    """
    candidates = []

    agents_block = config_data.get(AGENTS_SECTION)
    if agents_block is not None:
        if not isinstance(agents_block, dict):
            raise TypeError(f"'{AGENTS_SECTION}' must be a mapping, got {type(agents_block).__name__}")
        for name, section in agents_block.items():
            if section is None:
                section = {}
            if not isinstance(section, dict):
                raise TypeError(f"Agent '{name}' must be a mapping, got {type(section).__name__}")
            candidates.append((name, section))

    for name, section in config_data.items():
        if name in RESERVED_SECTIONS:
            continue
        if isinstance(section, dict):
            candidates.append((name, section))
        else:
            logger.warning("Ignoring top-level configuration key", key=name)

    agents: Dict[str, Dict[str, str]] = {}
    for name, section in candidates:
        entry = _normalize_agent(name, section)
        if not entry["project_id"]:
            logger.warning("Mapped project_id is required for logical agent", agent=name)
            continue
        agents[entry["name"].casefold()] = entry
    return list(agents.values())
