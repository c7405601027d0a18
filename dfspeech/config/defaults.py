"""
Default value application for the `general` section.

Values that fail to parse are logged and replaced by the documented default
instead of failing the load, so one typo never takes recognition offline.
"""

from typing import Any, Dict, Optional

import structlog

from dfspeech.config.models import DEFAULT_CALL_LOG_LOCATION

logger = structlog.get_logger(__name__)

INT_DEFAULTS = {
    "vad_voice_threshold": 512,
    "vad_voice_minimum_duration": 40,
    "vad_silence_minimum_duration": 500,
}

BOOL_DEFAULTS = {
    "enable_call_logs": True,
    "enable_preendpointer_recordings": False,
    "enable_postendpointer_recordings": False,
}

STRING_DEFAULTS = {
    "endpoint": "",
    "call_log_location": DEFAULT_CALL_LOG_LOCATION,
}


def parse_bool(raw: Any, default: bool) -> bool:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in ("1", "true", "yes", "y", "on"):
        return True
    if value in ("0", "false", "no", "n", "off"):
        return False
    return default


def parse_int(raw: Any) -> Optional[int]:
    """Parse a base-10 integer; None when the value is not one."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip(), 10)
    except (TypeError, ValueError):
        return None


def _is_blank(raw: Any) -> bool:
    return raw is None or (isinstance(raw, str) and raw.strip() == "")


def apply_general_defaults(general: Dict[str, Any]) -> None:
    """
    Fill in and coerce `general` values in place.

    Args:
        general: Normalized `general` section
    """
    for key, default in INT_DEFAULTS.items():
        raw = general.get(key)
        if _is_blank(raw):
            general[key] = default
            continue
        value = parse_int(raw)
        if value is None:
            logger.warning("Invalid integer in configuration, using default", key=key, value=raw, default=default)
            value = default
        general[key] = value

    for key, default in BOOL_DEFAULTS.items():
        raw = general.get(key)
        general[key] = default if _is_blank(raw) else parse_bool(raw, default)

    for key, default in STRING_DEFAULTS.items():
        raw = general.get(key)
        general[key] = default if _is_blank(raw) else str(raw).strip()
