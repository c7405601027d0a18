"""
Per-call event log.

Every recognition session may write one JSON-lines file describing what
happened on the call: session start/end, endpointer decisions, recording
files and events reported by the recognition backend. Each line is a
self-contained object:

    {"log_timestamp": "2024-05-01T13:02:11.318-04:00", "log_type": "ENDPOINTER",
     "log_event": "start_of_speech"}

plus any key/value pairs supplied with the event.

The directory comes from the configured `call_log_location` template, with
`{application}` replaced by the session's application name and strftime
directives expanded at open time. Recordings are written next to the log and
share its basename.
"""

from __future__ import annotations

import json
import os
import threading
from datetime import datetime
from enum import Enum
from typing import IO, Mapping, Optional

from dfspeech.logging_config import get_logger

logger = get_logger(__name__)

LOG_FILE_TYPE = "log"
LOG_FILE_EXTENSION = "jsonl"


class CallLogType(Enum):
    SESSION = "SESSION"
    ENDPOINTER = "ENDPOINTER"
    DIALOGFLOW = "DIALOGFLOW"


def expand_log_location(template: str, application: str, now: datetime) -> str:
    # strftime first so a '%' in the application name is never interpreted
    return now.strftime(template).replace("{application}", application)


def log_file_basename(session_id: str, now: datetime) -> str:
    return f"{now.minute:02d}{now.second:02d}_{session_id}"


def format_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 local time with milliseconds and UTC offset."""
    now = now or datetime.now().astimezone()
    return now.isoformat(timespec="milliseconds")


def format_event(log_type: CallLogType, event: str, data: Optional[Mapping[str, object]] = None,
                 now: Optional[datetime] = None) -> str:
    message = {
        "log_timestamp": format_timestamp(now),
        "log_type": log_type.value,
        "log_event": event,
    }
    for key, value in (data or {}).items():
        message[str(key)] = "" if value is None else str(value)
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False)


class CallEventLogger:
    """
    Owns one session's call log file.

    The lock is the owning session's lock: line appends are serialized with
    every other mutation of the session so concurrent origins (the media
    thread, the admin thread, backend callbacks) never interleave partial
    lines.
    """

    def __init__(self, lock: threading.RLock, enabled: bool):
        self._lock = lock
        self.enabled = enabled
        self.open_attempted = False
        self.directory = ""
        self.basename = ""
        self.path = ""
        self._handle: Optional[IO[str]] = None

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._handle is not None

    def should_open(self) -> bool:
        with self._lock:
            return self.enabled and not self.open_attempted

    def open(self, session_id: str, application: str, location: str, now: Optional[datetime] = None) -> bool:
        """
        Compute the log location and open the file. Only the first call per
        session does anything; failures are logged and leave logging disabled.
        """
        with self._lock:
            if self.open_attempted:
                return self._handle is not None
            self.open_attempted = True

        now = now or datetime.now()
        directory = expand_log_location(location, application, now) if location else ""
        basename = log_file_basename(session_id, now)
        with self._lock:
            self.directory = directory
            self.basename = basename

        if not directory:
            logger.warning("Not starting call log, path is empty", session_id=session_id)
            return False

        path = self.build_path(LOG_FILE_TYPE, LOG_FILE_EXTENSION)
        try:
            os.makedirs(directory, exist_ok=True)
            handle = open(path, "a", encoding="utf-8")
        except OSError as e:
            logger.warning("Unable to open call log", path=path, session_id=session_id, error=str(e))
            return False

        logger.debug("Opened call log", path=path, session_id=session_id)
        with self._lock:
            self._handle = handle
            self.path = path
        return True

    def build_path(self, kind: str, extension: str, utterance: Optional[int] = None) -> str:
        """Path of a file that belongs with this call log, e.g. a recording."""
        with self._lock:
            name = f"{self.basename}_{kind}"
            if utterance is not None:
                name += f"_{utterance}"
            return os.path.join(self.directory, f"{name}.{extension}")

    def has_location(self) -> bool:
        with self._lock:
            return bool(self.directory)

    def log(self, log_type: CallLogType, event: str, data: Optional[Mapping[str, object]] = None) -> None:
        """Append one event line; a no-op when logging is disabled or not open."""
        if not self.enabled:
            return
        with self._lock:
            if self._handle is None:
                return
            line = format_event(log_type, event, data)
            try:
                self._handle.write(line + "\n")
                self._handle.flush()
            except OSError as e:
                logger.warning("Failed to write call log event", path=self.path, log_event=event, error=str(e))

    def close(self) -> None:
        with self._lock:
            handle, self._handle = self._handle, None
        if handle is not None:
            try:
                handle.close()
            except OSError as e:
                logger.warning("Failed to close call log", path=self.path, error=str(e))
