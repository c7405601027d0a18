"""
Speech recognition session.

A SpeechSession is created when a call asks for speech recognition and lives
until the call releases it. It owns the endpointer state, the utterance
recordings, the call event log and the backend session, and is driven from
two threads:

- the media thread, which feeds 20 ms signed-linear frames to write_audio()
- an administrative path (dialplan property changes, results, teardown)

Every mutable field is guarded by one re-entrant lock. The lock is held only
around field access and call-log line appends, never across backend calls or
recording writes.

Speech state follows the host's speech API:

    NOT_READY --start()--> WAIT --> READY --(backend finished / error)--> DONE
                             \\--queued event--> DONE (or NOT_READY on failure)

start() always passes through WAIT, so a session that already reached DONE
runs a full stop sequence for every new recognition.
"""

from __future__ import annotations

import functools
import os
import tempfile
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional

from prometheus_client import Counter, Gauge

from dfspeech import vad
from dfspeech.backend import BackendResult, BackendState, RecognitionBackend
from dfspeech.call_log import CallEventLogger, CallLogType
from dfspeech.config.defaults import parse_int
from dfspeech.config.models import EngineConfig
from dfspeech.errors import InvalidGrammarError, InvalidPropertyError, SynthesisError, UnsupportedOperationError
from dfspeech.logging_config import get_logger, reset_session_id, set_session_id
from dfspeech.recording import UtteranceRecorder
from dfspeech.synthesis import Synthesizer
from dfspeech.utils.audio import slin_to_ulaw

logger = get_logger(__name__)

PROP_SESSION_ID = "session_id"
PROP_ALTERNATE_SESSION_ID = "name"
PROP_PROJECT_ID = "project_id"
PROP_LANGUAGE = "language"
PROP_LOG_CONTEXT = "log_context"
PROP_ALTERNATE_LOG_CONTEXT = "logContext"
PROP_APPLICATION = "application"
PROP_VOICE_THRESHOLD = "voice_threshold"
PROP_VOICE_DURATION = "voice_duration"
PROP_SILENCE_DURATION = "silence_duration"

EVENT_PREFIX = "event:"
BUILTIN_GRAMMAR_PREFIX = "builtin:grammar/"

OUTPUT_AUDIO_SLOT = "output_audio"
FULFILLMENT_TEXT_SLOT = "fulfillment_text"
FULFILLMENT_AUDIO_GRAMMAR = "fulfillment_audio"
FULFILLMENT_AUDIO_SCORE = 100
FULFILLMENT_FILE_PREFIX = "res_speech_gdfe_fulfillment_"
FULFILLMENT_FILE_SUFFIX = ".wav"

_SESSIONS_ACTIVE = Gauge(
    "dfspeech_sessions_active",
    "Speech sessions currently allocated",
)
_ENDPOINTER_EVENTS = Counter(
    "dfspeech_endpointer_events_total",
    "Endpointer state transitions",
    labelnames=("event",),
)
_BACKEND_FAILURES = Counter(
    "dfspeech_backend_failures_total",
    "Recognition backend failures that ended a recognition",
    labelnames=("stage",),
)


class SpeechState(Enum):
    NOT_READY = "not_ready"
    READY = "ready"
    WAIT = "wait"
    DONE = "done"


@dataclass(frozen=True)
class SpeechResult:
    text: str
    score: int
    grammar: str


def _matches(name: str, *candidates: str) -> bool:
    folded = name.casefold()
    return any(folded == c.casefold() for c in candidates)


def _session_context(method):
    """Bind the session id to service log records emitted by `method`."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        token = set_session_id(self.session_id)
        try:
            return method(self, *args, **kwargs)
        finally:
            reset_session_id(token)
    return wrapper


class SpeechSession:
    """One recognition conversation on one call."""

    def __init__(self, config: EngineConfig, backend: RecognitionBackend,
                 synthesizer: Optional[Synthesizer] = None):
        self._lock = threading.RLock()
        self.config = config
        self._synthesizer = synthesizer

        self._session_id = f"{id(self):x}"
        self._state = SpeechState.NOT_READY
        self._destroyed = False
        self.spoke = False
        self.quiet = False

        self.logical_agent_name = ""
        self.project_id = ""
        self.service_key = config.service_key
        self.endpoint = config.endpoint
        self.event = ""
        self.language = ""
        self.last_audio_response = ""
        self.call_logging_application = "unknown"
        self.call_logging_context = ""

        self.vad_params = vad.VADParams(
            voice_threshold=config.vad_voice_threshold,
            voice_minimum_duration=config.vad_voice_minimum_duration,
            silence_minimum_duration=config.vad_silence_minimum_duration,
        )
        self.vad_status = vad.VADStatus()
        self.utterance = 0

        self.call_log = CallEventLogger(self._lock, config.enable_call_logs)
        self.recorder = UtteranceRecorder(self._lock, self.call_log, lambda: self.utterance)

        self._backend = backend.create_session(self)
        self._backend.set_auth_key(config.service_key)
        self._backend.set_endpoint(config.endpoint)
        # temporary id until the dialplan names the session
        self._backend.set_session_id(self._session_id)

        _SESSIONS_ACTIVE.inc()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def session_id(self) -> str:
        with self._lock:
            return self._session_id

    @property
    def state(self) -> SpeechState:
        with self._lock:
            return self._state

    @property
    def vad_state(self) -> vad.VADState:
        with self._lock:
            return self.vad_status.state

    def _set_state(self, state: SpeechState) -> None:
        with self._lock:
            self._state = state

    # ------------------------------------------------------------------
    # Grammar activation
    # ------------------------------------------------------------------
    def load(self, grammar_name: str, grammar: str) -> None:
        """Grammars live in the backend agent; nothing to load."""

    def unload(self, grammar_name: str) -> None:
        pass

    def deactivate(self, grammar_name: str) -> None:
        pass

    def change_results_type(self, results_type: str) -> None:
        pass

    def dtmf(self, digits: str) -> None:
        raise UnsupportedOperationError("DTMF is not supported by this engine")

    @_session_context
    def activate(self, grammar_name: str) -> None:
        """
        Prime the next start().

        `event:<name>` queues a backend event (e.g. event:welcome).
        `builtin:grammar/<agent>[?<event>]` selects a logical agent and
        optionally queues an event.

        Raises:
            InvalidGrammarError: For any other directive
        """
        grammar_name = grammar_name or ""
        folded = grammar_name.casefold()
        if folded.startswith(EVENT_PREFIX):
            event = grammar_name[len(EVENT_PREFIX):]
            logger.debug("Activating event", backend_event=event)
            with self._lock:
                self.event = event
        elif folded.startswith(BUILTIN_GRAMMAR_PREFIX):
            name, _, event = grammar_name[len(BUILTIN_GRAMMAR_PREFIX):].partition("?")
            self._activate_agent(name, event)
        else:
            logger.warning("Do not understand grammar name", grammar=grammar_name)
            raise InvalidGrammarError(f"Do not understand grammar name {grammar_name!r}")

    def _activate_agent(self, name: str, event: str) -> None:
        credentials = self.config.resolve_agent(name)
        with self._lock:
            self.logical_agent_name = name
            self.project_id = credentials.project_id
            self.service_key = credentials.service_key
            self.endpoint = credentials.endpoint
            self.event = event

        self._backend.set_project_id(credentials.project_id)
        self._backend.set_endpoint(credentials.endpoint)
        self._backend.set_auth_key(credentials.service_key)

        logger.debug(
            "Activating project",
            project_id=credentials.project_id,
            logical_agent_name=name,
            known_agent=name in self.config.agents,
            backend_event=event or None,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @_session_context
    def change(self, name: str, value: Optional[str]) -> None:
        """
        Set a session property.

        Raises:
            InvalidPropertyError: Unknown name, or a value the property rejects
        """
        value = "" if value is None else str(value)

        if _matches(name, PROP_SESSION_ID, PROP_ALTERNATE_SESSION_ID):
            if not value:
                raise self._reject(name, f"Session ID must have a value (remains {self._backend.get_session_id()})")
            self._backend.set_session_id(value)
            with self._lock:
                self._session_id = value
        elif _matches(name, PROP_PROJECT_ID):
            if not value:
                raise self._reject(name, f"Project ID must have a value (remains {self._backend.get_project_id()})")
            with self._lock:
                self.project_id = value
            self._backend.set_project_id(value)
        elif _matches(name, PROP_LANGUAGE):
            with self._lock:
                self.language = value
        elif _matches(name, PROP_LOG_CONTEXT, PROP_ALTERNATE_LOG_CONTEXT):
            with self._lock:
                self.call_logging_context = value
        elif _matches(name, PROP_APPLICATION):
            with self._lock:
                self.call_logging_application = value
        elif _matches(name, PROP_VOICE_THRESHOLD, PROP_VOICE_DURATION, PROP_SILENCE_DURATION):
            number = self._parse_vad_value(name, value)
            field = {
                PROP_VOICE_THRESHOLD: "voice_threshold",
                PROP_VOICE_DURATION: "voice_minimum_duration",
                PROP_SILENCE_DURATION: "silence_minimum_duration",
            }[name.casefold()]
            with self._lock:
                self.vad_params = replace(self.vad_params, **{field: number})
        else:
            raise self._reject(name, f"Unknown property '{name}'")

    @_session_context
    def get(self, name: str) -> str:
        """
        Read a session property as a string.

        Raises:
            InvalidPropertyError: Unknown property name
        """
        if _matches(name, PROP_SESSION_ID, PROP_ALTERNATE_SESSION_ID):
            return self._backend.get_session_id()
        if _matches(name, PROP_PROJECT_ID):
            return self._backend.get_project_id()
        with self._lock:
            if _matches(name, PROP_LANGUAGE):
                return self.language
            if _matches(name, PROP_LOG_CONTEXT, PROP_ALTERNATE_LOG_CONTEXT):
                return self.call_logging_context
            if _matches(name, PROP_APPLICATION):
                return self.call_logging_application
            if _matches(name, PROP_VOICE_THRESHOLD):
                return str(self.vad_params.voice_threshold)
            if _matches(name, PROP_VOICE_DURATION):
                return str(self.vad_params.voice_minimum_duration)
            if _matches(name, PROP_SILENCE_DURATION):
                return str(self.vad_params.silence_minimum_duration)
        raise self._reject(name, f"Unknown property '{name}'")

    def _parse_vad_value(self, name: str, value: str) -> int:
        if not value.strip():
            raise self._reject(name, f"Cannot set {name} to an empty value")
        number = parse_int(value)
        if number is None:
            raise self._reject(name, f"Invalid value for {name} -- '{value}'")
        return number

    def _reject(self, name: str, message: str) -> InvalidPropertyError:
        logger.warning(message, property=name)
        return InvalidPropertyError(name, message)

    # ------------------------------------------------------------------
    # Recognition
    # ------------------------------------------------------------------
    @_session_context
    def start(self) -> None:
        """Begin one recognition attempt (one utterance)."""
        with self._lock:
            self._state = SpeechState.WAIT
            event = self.event
            self.event = ""
            language = self.language
            project_id = self.project_id
            self.vad_status = vad.VADStatus()
            self.utterance += 1
            self.spoke = False
            self.quiet = False
            utterance = self.utterance
            session_id = self._session_id
            application = self.call_logging_application
            context = self.call_logging_context
            agent_name = self.logical_agent_name
            params = self.vad_params
        self.recorder.reset()

        if self.call_log.should_open():
            self.call_log.open(session_id, application, self.config.call_log_location)

        self.call_log.log(CallLogType.SESSION, "start", {
            "event": event,
            "language": language,
            "project_id": project_id,
            "logical_agent_name": agent_name,
            "utterance": utterance,
            "context": context,
            "application": application,
        })
        self.call_log.log(CallLogType.ENDPOINTER, "start", {
            PROP_VOICE_THRESHOLD: params.voice_threshold,
            PROP_VOICE_DURATION: params.voice_minimum_duration,
            PROP_SILENCE_DURATION: params.silence_minimum_duration,
        })

        if event:
            if self._backend.recognize_event(event, language):
                self.stop()
            else:
                _BACKEND_FAILURES.labels(stage="recognize_event").inc()
                logger.warning("Error recognizing event", backend_event=event)
                self._set_state(SpeechState.NOT_READY)
        else:
            self._set_state(SpeechState.READY)

    def write_audio(self, frame: bytes) -> None:
        """
        Feed one signed-linear frame. Audio is only forwarded to the backend
        once the endpointer has detected speech; before that it is at most
        captured by the pre-endpointer recording.
        """
        with self._lock:
            if self._state is not SpeechState.READY:
                return
            params = self.vad_params
            status = self.vad_status
            language = self.language

        decision = vad.classify(frame, params, status)

        with self._lock:
            self.vad_status = decision.status

        if decision.event:
            _ENDPOINTER_EVENTS.labels(event=decision.event).inc()
            self.call_log.log(CallLogType.ENDPOINTER, decision.event)

        if decision.started_speaking and not self._backend.start_recognition(language):
            _BACKEND_FAILURES.labels(stage="start_recognition").inc()
            logger.warning("Error starting recognition", session_id=self.session_id)
            self.stop()
            return

        config = self.config
        if decision.status.state is not vad.VADState.START:
            ulaw = slin_to_ulaw(frame)
            self.recorder.record(
                ulaw,
                speaking=decision.status.state is vad.VADState.SPEAKING,
                pre_enabled=config.enable_preendpointer_recordings,
                post_enabled=config.enable_postendpointer_recordings,
            )

            result = self._backend.write_audio(ulaw)

            with self._lock:
                spoke = self.spoke
            if not spoke and self._backend.response_count() > 0:
                with self._lock:
                    self.spoke = True
                    self.quiet = True

            if result in (BackendState.FINISHED, BackendState.ERROR):
                if result is BackendState.ERROR:
                    _BACKEND_FAILURES.labels(stage="write_audio").inc()
                self._backend.stop_recognition()
                self.stop()
        elif self.recorder.pre_active(config.enable_preendpointer_recordings):
            self.recorder.record(
                slin_to_ulaw(frame),
                speaking=False,
                pre_enabled=True,
                post_enabled=False,
            )

    def stop(self) -> None:
        """End the current recognition. Safe to call repeatedly."""
        with self._lock:
            if self._state is SpeechState.DONE:
                return
            self._state = SpeechState.DONE
        self.recorder.close()
        self.call_log.log(CallLogType.SESSION, "end")

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------
    @_session_context
    def get_results(self) -> List[SpeechResult]:
        """
        Drain backend results in order. Fulfillment audio, either returned by
        the backend or synthesized from fulfillment_text, is appended last as
        a file path tagged fulfillment_audio.
        """
        results: List[SpeechResult] = []
        output_audio: Optional[BackendResult] = None
        fulfillment_text: Optional[BackendResult] = None

        for index in range(self._backend.result_count()):
            result = self._backend.result_at(index)
            if result is None:
                continue
            if _matches(result.slot, OUTPUT_AUDIO_SLOT):
                if result.audio:
                    output_audio = result
                continue
            results.append(SpeechResult(text=result.value, score=result.score, grammar=result.slot))
            if _matches(result.slot, FULFILLMENT_TEXT_SLOT):
                fulfillment_text = result

        audio_file = None
        if output_audio is not None:
            audio_file = self._write_output_audio(output_audio)
        elif fulfillment_text is not None and fulfillment_text.value:
            audio_file = self._synthesize(fulfillment_text.value)

        if audio_file:
            results.append(SpeechResult(text=audio_file, score=FULFILLMENT_AUDIO_SCORE,
                                        grammar=FULFILLMENT_AUDIO_GRAMMAR))
            self._replace_last_audio_response(audio_file)

        return results

    def _temporary_audio_file(self) -> Optional[str]:
        try:
            fd, path = tempfile.mkstemp(prefix=FULFILLMENT_FILE_PREFIX, suffix=FULFILLMENT_FILE_SUFFIX)
        except OSError as e:
            logger.warning("Unable to create temporary file for fulfillment audio", error=str(e))
            return None
        os.close(fd)
        return path

    def _write_output_audio(self, result: BackendResult) -> Optional[str]:
        path = self._temporary_audio_file()
        if path is None:
            return None
        payload = result.audio
        try:
            with open(path, "wb") as f:
                written = f.write(payload)
        except OSError as e:
            logger.warning("Failed writing fulfillment audio", path=path, error=str(e))
            return path
        if written < len(payload):
            logger.warning("Short write to temporary file for fulfillment audio", path=path)
        return path

    def _synthesize(self, text: str) -> Optional[str]:
        if self._synthesizer is None:
            logger.debug("No synthesizer configured, fulfillment text not rendered")
            return None
        path = self._temporary_audio_file()
        if path is None:
            return None
        with self._lock:
            language = self.language
        try:
            produced = self._synthesizer.synthesize(self.config.service_key, text, language, output_path=path)
        except SynthesisError as e:
            logger.warning("Failed to synthesize fulfillment text", path=path, error=str(e))
            self._remove_file(path)
            return None
        if produced != path:
            self._remove_file(path)
        return produced

    def _replace_last_audio_response(self, path: str) -> None:
        with self._lock:
            previous, self.last_audio_response = self.last_audio_response, path
        if previous and previous != path:
            self._remove_file(previous)

    @staticmethod
    def _remove_file(path: str) -> None:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Unable to remove fulfillment audio", path=path, error=str(e))

    # ------------------------------------------------------------------
    # Backend call events and teardown
    # ------------------------------------------------------------------
    def log_backend_event(self, event: str, data: Optional[Dict[str, str]] = None) -> None:
        self.call_log.log(CallLogType.DIALOGFLOW, event, data)

    @_session_context
    def destroy(self) -> None:
        """Release everything the session holds. Safe at any point, once or more."""
        with self._lock:
            if self._destroyed:
                return
            self._destroyed = True
            state = self._state
            # frames still in flight from the media thread are dropped
            self._state = SpeechState.DONE
            last_audio, self.last_audio_response = self.last_audio_response, ""

        if state is SpeechState.READY:
            self._backend.stop_recognition()
        self.recorder.close(only_open=True)
        if last_audio:
            self._remove_file(last_audio)
        self._backend.close()
        self.call_log.close()
        _SESSIONS_ACTIVE.dec()
