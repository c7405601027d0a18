"""
Utterance recordings.

Two raw mu-law streams may be captured per utterance, next to the call log:

- pre:  everything the endpointer saw, starting with the lead-in before
        speech was detected
- post: only audio from the point speech was detected

Files are headerless 8 kHz mu-law (`.ul`) named
`<basename>_<kind>_<utterance>.ul`. Each stream is opened lazily on its first
eligible frame and at most once per utterance, so a failing open (permissions,
full disk) is not retried on every 20 ms frame.
"""

from __future__ import annotations

import threading
from typing import Callable, IO, Optional

from prometheus_client import Counter

from dfspeech.call_log import CallEventLogger, CallLogType
from dfspeech.logging_config import get_logger

logger = get_logger(__name__)

PRE_ENDPOINTER = "pre"
POST_ENDPOINTER = "post"
RECORDING_EXTENSION = "ul"

_RECORDING_OPEN_FAILURES = Counter(
    "dfspeech_recording_open_failures_total",
    "Recording files that could not be opened",
    labelnames=("kind",),
)
_RECORDING_BYTES = Counter(
    "dfspeech_recording_bytes_total",
    "Mu-law bytes written to utterance recordings",
    labelnames=("kind",),
)


class RecordingStream:
    """One lazily opened append stream."""

    def __init__(self, kind: str, lock: threading.RLock):
        self.kind = kind
        self._lock = lock
        self.open_attempted = False
        self.path: Optional[str] = None
        self._handle: Optional[IO[bytes]] = None

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._handle is not None

    def wants_open(self) -> bool:
        with self._lock:
            return self._handle is None and not self.open_attempted

    def reset(self) -> None:
        """Allow one fresh open attempt for the next utterance."""
        with self._lock:
            self.open_attempted = False

    def open(self, path: str) -> bool:
        with self._lock:
            self.open_attempted = True
        try:
            handle = open(path, "wb")
        except OSError as e:
            _RECORDING_OPEN_FAILURES.labels(kind=self.kind).inc()
            logger.warning("Unable to open recording", kind=self.kind, path=path, error=str(e))
            return False
        with self._lock:
            self._handle = handle
            self.path = path
        logger.debug("Opened recording", kind=self.kind, path=path)
        return True

    def write(self, data: bytes) -> None:
        with self._lock:
            handle = self._handle
        if handle is None:
            return
        try:
            written = handle.write(data)
        except (OSError, ValueError) as e:
            logger.warning("Failed to write recording", kind=self.kind, path=self.path, error=str(e))
            return
        if written is not None and written < len(data):
            logger.warning("Short write to recording", kind=self.kind, path=self.path,
                           written=written, expected=len(data))
        _RECORDING_BYTES.labels(kind=self.kind).inc(written or 0)

    def close(self) -> bool:
        """Close the stream; True when a file was actually open."""
        with self._lock:
            handle, self._handle = self._handle, None
        if handle is None:
            return False
        try:
            handle.close()
        except OSError as e:
            logger.warning("Failed to close recording", kind=self.kind, path=self.path, error=str(e))
        return True


class UtteranceRecorder:
    """
    Pre- and post-endpointer streams for one session.

    Only the media thread writes; the streams share the session lock for the
    handle and flag bookkeeping. File writes happen outside it.
    """

    def __init__(self, lock: threading.RLock, call_log: CallEventLogger,
                 utterance: Callable[[], int]):
        self._call_log = call_log
        self._utterance = utterance
        self.pre = RecordingStream(PRE_ENDPOINTER, lock)
        self.post = RecordingStream(POST_ENDPOINTER, lock)

    def reset(self) -> None:
        self.pre.reset()
        self.post.reset()

    def pre_active(self, enabled: bool) -> bool:
        """Whether lead-in audio should still be routed to the pre stream."""
        return enabled and (self.pre.is_open or self.pre.wants_open())

    def record(self, ulaw: bytes, speaking: bool, pre_enabled: bool, post_enabled: bool) -> None:
        """Route one companded frame to whichever streams are enabled."""
        if not (pre_enabled or post_enabled):
            return
        if not self._call_log.has_location():
            return
        if pre_enabled:
            self._write(self.pre, ulaw)
        if post_enabled and speaking:
            self._write(self.post, ulaw)

    def close(self, only_open: bool = False) -> None:
        """
        Close both streams and log a stop event for each. With only_open,
        streams that were never opened are skipped silently.
        """
        for stream in (self.pre, self.post):
            was_open = stream.close()
            if was_open or not only_open:
                self._call_log.log(CallLogType.ENDPOINTER, f"{stream.kind}_recording_stop")

    def _write(self, stream: RecordingStream, ulaw: bytes) -> None:
        if stream.wants_open():
            path = self._call_log.build_path(stream.kind, RECORDING_EXTENSION, self._utterance())
            if stream.open(path):
                self._call_log.log(CallLogType.ENDPOINTER, f"{stream.kind}_recording_start", {"filename": path})
        stream.write(ulaw)
