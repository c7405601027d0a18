"""
Service key loading.

Service keys are service-account JSON documents. A configured value is either
the document itself (anything containing '{') or a path to a file holding it.

DFSPEECH_SERVICE_KEY, when set, replaces the global key from the file so that
credentials can be kept out of version-controlled YAML.
"""

import os
from typing import Any, Dict, List

import structlog

logger = structlog.get_logger(__name__)

SERVICE_KEY_ENV = "DFSPEECH_SERVICE_KEY"


def looks_like_inline_key(value: str) -> bool:
    return "{" in value


def load_service_key(value: str) -> str:
    """
    Resolve a configured service key value to key material.

    Args:
        value: Inline JSON key, or a filesystem path to one

    Returns:
        The key material; empty string when the file cannot be read
    """
    value = (value or "").strip()
    if not value:
        return ""
    if looks_like_inline_key(value):
        return value

    logger.debug("Loading service key data", path=value)
    try:
        with open(value, "r") as f:
            return f.read()
    except OSError as e:
        logger.error("Unable to read service key file", path=value, error=str(e))
        return ""


def inject_service_keys(general: Dict[str, Any], agents: List[Dict[str, str]]) -> None:
    """
    Replace configured service key values with loaded key material, in place.

    Args:
        general: Normalized `general` section
        agents: Normalized agent entries
    """
    env_key = os.getenv(SERVICE_KEY_ENV, "").strip()
    if env_key:
        general["service_key"] = env_key

    raw = general.get("service_key")
    if raw is None or str(raw).strip() == "":
        logger.info("Service key not provided, backend default credentials will be used")
        general["service_key"] = ""
    else:
        general["service_key"] = load_service_key(str(raw))

    for agent in agents:
        if agent.get("service_key"):
            agent["service_key"] = load_service_key(agent["service_key"])
