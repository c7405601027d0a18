"""
Structured Logging Configuration

This module configures structured logging using the 'structlog' library.
It sets up processors for adding timestamps, log levels, the active speech
session id, and renders logs in JSON (default) or colorized console format
based on env.

Service diagnostics only. The per-call JSON-lines event log written for each
recognition session lives in dfspeech.call_log.
"""

import os
import logging
import sys
import contextvars
import time

import structlog
from structlog import dev as structlog_dev
from logging.handlers import RotatingFileHandler

# Context variable for the speech session currently being serviced
session_id_var = contextvars.ContextVar('session_id', default=None)

def get_session_id():
    """Get the current session ID."""
    return session_id_var.get()

def set_session_id(value):
    """Bind a session ID to the current context; returns a reset token."""
    return session_id_var.set(value)

def reset_session_id(token):
    session_id_var.reset(token)

def add_session_id(logger, method_name, event_dict):
    """Add session ID to the log record."""
    session_id = get_session_id()
    if session_id and 'session_id' not in event_dict:
        event_dict['session_id'] = session_id
    return event_dict

def add_service_context(logger, method_name, event_dict):
    """Add service context to the log record."""
    event_dict['service'] = 'dfspeech'
    component = event_dict.get('logger')
    if not component:
        try:
            component = getattr(getattr(logger, 'logger', None), 'name', None) or getattr(logger, 'name')
        except AttributeError:
            component = 'unknown'
    event_dict['component'] = component
    return event_dict

def sanitize_secrets(logger, method_name, event_dict):
    """
    Redact sensitive information from log events.

    Service keys are usually full service-account JSON documents, so they
    must never reach stdout or log files verbatim.

    Redaction patterns:
    - Service keys: service_key, auth_key
    - API keys: api_key, apikey, api-key
    - Tokens: token, access_token, refresh_token, bearer
    - Passwords: password, passwd, pwd
    - Credentials: credential, secret, private_key

    Values are replaced with '***REDACTED***' while preserving log context.
    """
    SENSITIVE_KEYS = {
        'service_key', 'auth_key',
        'api_key', 'apikey', 'api-key',
        'token', 'access_token', 'refresh_token', 'bearer',
        'password', 'passwd', 'pwd',
        'authorization',
        'credential', 'credentials', 'secret', 'secrets',
        'private_key', 'private-key', 'privatekey',
        'client_secret',
    }

    def redact_value(value):
        """Redact a sensitive value, preserving structure for debugging."""
        if value is None:
            return None
        if isinstance(value, bool):
            return value
        if isinstance(value, (str, bytes)):
            if not value:
                return value
            if isinstance(value, str) and len(value) > 4:
                return f"{value[:2]}***REDACTED***"
            return "***REDACTED***"
        if isinstance(value, (list, tuple)):
            return [redact_value(v) for v in value]
        return "***REDACTED***"

    def is_sensitive(key):
        key_normalized = str(key).lower().replace('_', '').replace('-', '')
        for pattern in SENSITIVE_KEYS:
            pattern_normalized = pattern.replace('_', '').replace('-', '')
            # exact or suffix match, so "passthrough" never matches "pass"
            if key_normalized == pattern_normalized or key_normalized.endswith(pattern_normalized):
                return True
        return False

    def sanitize_dict(d):
        if not isinstance(d, dict):
            return d
        sanitized = {}
        for key, value in d.items():
            if is_sensitive(key):
                sanitized[key] = redact_value(value)
            elif isinstance(value, dict):
                sanitized[key] = sanitize_dict(value)
            elif isinstance(value, (list, tuple)):
                sanitized[key] = [sanitize_dict(v) if isinstance(v, dict) else v for v in value]
            else:
                sanitized[key] = value
        return sanitized

    return sanitize_dict(event_dict)

def configure_logging(log_level="INFO", log_to_file=False, log_file_path="dfspeech.log", service_name="dfspeech"):
    """
    Set up structured logging.

    Environment overrides (optional):
      - LOG_LEVEL: debug|info|warning|error|critical (default: INFO)
      - LOG_FORMAT: json|console (default: json)
      - LOG_COLOR:  0|1 (console only; default: 1)
      - LOG_TO_FILE: 0|1 (default: 0)
      - LOG_FILE_PATH: path (default: dfspeech.log)
    """
    env_level = os.getenv("LOG_LEVEL")
    if env_level:
        log_level = env_level.upper()
    raw_to_file = os.getenv("LOG_TO_FILE")
    if raw_to_file is not None:
        try:
            log_to_file = bool(int(raw_to_file))
        except ValueError:
            pass
    log_file_path = os.getenv("LOG_FILE_PATH", log_file_path)
    log_format = os.getenv("LOG_FORMAT", "json").strip().lower()
    log_color = os.getenv("LOG_COLOR", "1").strip() not in ("0", "false", "False")

    log_level_upper = log_level.upper() if isinstance(log_level, str) else str(log_level)
    if isinstance(log_level, str):
        level_value = getattr(logging, log_level_upper, logging.INFO)
    else:
        level_value = int(log_level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_service_context,
            add_session_id,
            sanitize_secrets,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = structlog_dev.ConsoleRenderer(colors=log_color) if log_format == "console" else structlog.processors.JSONRenderer()

    processor_formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
        ],
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level_value)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(processor_formatter)
    root_logger.addHandler(console_handler)

    if log_to_file:
        # A directory (trailing slash or existing dir) gets a timestamped file name.
        ts = time.strftime("%Y%m%d-%H%M%S")
        path = log_file_path
        if path.endswith(os.sep) or os.path.isdir(path):
            path = os.path.join(path, f"{service_name}-{ts}.log")
        elif "{ts}" in path:
            path = path.replace("{ts}", ts)
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            file_handler = RotatingFileHandler(path, maxBytes=10*1024*1024, backupCount=5)
        except OSError as e:
            get_logger(__name__).warning(
                "File logging disabled due to error; continuing with console only",
                error=str(e),
                configured_path=log_file_path,
            )
        else:
            file_handler.setFormatter(processor_formatter)
            root_logger.addHandler(file_handler)
            get_logger(__name__).info("File logging configured", log_file_path=path)

def get_logger(name: str):
    """Get a structlog logger."""
    return structlog.get_logger(name)
