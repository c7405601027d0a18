"""
Speech engine entry point.

The engine is what the host registers: it owns the configuration store and
the process-wide recognition backend, and hands out SpeechSession objects.
Each session is pinned to the configuration snapshot current at creation.
"""

from typing import Any, Dict, Optional

from dfspeech.backend import BackendLogLevel, RecognitionBackend
from dfspeech.config.models import EngineConfig
from dfspeech.config.store import ConfigStore
from dfspeech.logging_config import get_logger
from dfspeech.session import SpeechSession
from dfspeech.synthesis import Synthesizer

logger = get_logger(__name__)

ENGINE_NAME = "GoogleDFE"
AUDIO_FORMAT = "slin"

_BACKEND_LOG_METHODS = {
    BackendLogLevel.DEBUG: "debug",
    BackendLogLevel.INFO: "info",
    BackendLogLevel.WARNING: "warning",
    BackendLogLevel.ERROR: "error",
}

_backend_logger = get_logger("dfspeech.backend")


def _format_backend_message(fmt: str, args: tuple) -> str:
    if not args:
        return fmt
    try:
        return fmt % args
    except (TypeError, ValueError):
        return " ".join([fmt, *map(str, args)])


def backend_general_log(level, file: str, line: int, function: str, fmt: str, *args) -> None:
    """Route backend diagnostics into service logging."""
    try:
        level = BackendLogLevel(level)
    except ValueError:
        level = BackendLogLevel.INFO
    method = getattr(_backend_logger, _BACKEND_LOG_METHODS[level])
    method(_format_backend_message(fmt, args), file=file, line=line, function=function)


def backend_call_log(owner: Any, event: str, data: Optional[Dict[str, str]] = None) -> None:
    """Route a call-scoped backend event into its session's call log."""
    if isinstance(owner, SpeechSession):
        owner.log_backend_event(event, data)
    else:
        _backend_logger.debug("Dropping call event without a session", log_event=event)


class SpeechEngine:
    """Registers with the host and creates sessions."""

    name = ENGINE_NAME
    audio_format = AUDIO_FORMAT

    def __init__(self, backend: RecognitionBackend, synthesizer: Optional[Synthesizer] = None,
                 config_store: Optional[ConfigStore] = None, config_path: Optional[str] = None):
        self.backend = backend
        self.synthesizer = synthesizer
        self.config_store = config_store or ConfigStore(config_path)
        self._started = False

    def start(self) -> EngineConfig:
        """Load configuration and initialize the backend. Called once."""
        if self._started:
            return self.config_store.current()
        config = self.config_store.load()
        self.backend.init(backend_general_log, backend_call_log)
        self._started = True
        logger.info(
            "Speech engine started",
            engine=self.name,
            config_version=config.version,
            agents=len(config.agents),
            call_logs=config.enable_call_logs,
        )
        return config

    def config(self) -> EngineConfig:
        return self.config_store.current()

    def reload(self) -> bool:
        """Re-read configuration; existing sessions keep their snapshot."""
        return self.config_store.reload()

    def create_session(self) -> SpeechSession:
        session = SpeechSession(self.config_store.current(), self.backend, self.synthesizer)
        logger.debug("Created speech session", session_id=session.session_id,
                     config_version=session.config.version)
        return session
