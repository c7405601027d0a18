"""
Recognition backend abstraction.

The engine talks to a remote streaming intent-detection service through these
interfaces. A concrete client library wraps its own transport; the core only
relies on the operations below, all of which are synchronous from the
caller's point of view (the client applies its own timeouts).

Logging hooks: the backend receives two callables at init time. The first
takes general diagnostics, the second call-scoped events which the engine
routes into the owning session's call log.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

GeneralLogCallback = Callable[..., None]
CallLogCallback = Callable[[Any, str, Dict[str, str]], None]


class BackendState(Enum):
    """Result of feeding audio to a streaming recognition."""
    CONTINUING = "continuing"
    FINISHED = "finished"
    ERROR = "error"


class BackendLogLevel(Enum):
    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3


@dataclass(frozen=True)
class BackendResult:
    """
    One result slot.

    `value` is text for ordinary slots. Binary slots (output_audio) carry
    their payload in `audio`.
    """
    slot: str
    value: str = ""
    score: int = 0
    audio: Optional[bytes] = None


class BackendSession(ABC):
    """One recognition conversation with the backend."""

    @abstractmethod
    def set_auth_key(self, key: str) -> None: ...

    @abstractmethod
    def set_endpoint(self, endpoint: str) -> None: ...

    @abstractmethod
    def set_project_id(self, project_id: str) -> None: ...

    @abstractmethod
    def set_session_id(self, session_id: str) -> None: ...

    @abstractmethod
    def get_session_id(self) -> str: ...

    @abstractmethod
    def get_project_id(self) -> str: ...

    @abstractmethod
    def start_recognition(self, language: str) -> bool:
        """Open a streaming recognition; False on failure."""

    @abstractmethod
    def recognize_event(self, event: str, language: str) -> bool:
        """Trigger intent detection for a named event; False on failure."""

    @abstractmethod
    def write_audio(self, ulaw: bytes) -> BackendState:
        """Feed 8 kHz mu-law audio to the open recognition."""

    @abstractmethod
    def response_count(self) -> int:
        """Number of responses received so far for this recognition."""

    @abstractmethod
    def result_count(self) -> int: ...

    @abstractmethod
    def result_at(self, index: int) -> Optional[BackendResult]: ...

    @abstractmethod
    def stop_recognition(self) -> None: ...

    @abstractmethod
    def close(self) -> None: ...


class RecognitionBackend(ABC):
    """Process-wide client library entry point."""

    @abstractmethod
    def init(self, general_log: GeneralLogCallback, call_log: CallLogCallback) -> None:
        """Register logging hooks; called once before any session is created."""

    @abstractmethod
    def create_session(self, owner: Any) -> BackendSession:
        """
        Create a backend session. `owner` is handed back unchanged as the
        first argument of the call-log hook.
        """
