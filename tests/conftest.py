"""
Shared fixtures: an in-memory recognition backend and synthesizer.

The fakes record every call so tests can assert on what the session pushed to
its collaborators, and expose knobs (`fail_start`, `results`, `states`...)
to script backend behavior.
"""

import os
from array import array
from typing import Any, Dict, List, Optional

import pytest

from dfspeech.backend import BackendResult, BackendSession, BackendState, RecognitionBackend
from dfspeech.config.models import AgentDirectory, EngineConfig, LogicalAgent
from dfspeech.errors import SynthesisError
from dfspeech.synthesis import Synthesizer


class FakeBackendSession(BackendSession):

    def __init__(self, owner: Any):
        self.owner = owner
        self.auth_key = ""
        self.endpoint = ""
        self.project_id = ""
        self.session_id = ""
        self.calls: List[tuple] = []
        self.audio: List[bytes] = []
        self.results: List[Optional[BackendResult]] = []
        self.states: List[BackendState] = []
        self.responses = 0
        self.fail_start = False
        self.fail_event = False
        self.closed = False

    def set_auth_key(self, key):
        self.auth_key = key

    def set_endpoint(self, endpoint):
        self.endpoint = endpoint

    def set_project_id(self, project_id):
        self.project_id = project_id

    def set_session_id(self, session_id):
        self.session_id = session_id

    def get_session_id(self):
        return self.session_id

    def get_project_id(self):
        return self.project_id

    def start_recognition(self, language):
        self.calls.append(("start_recognition", language))
        return not self.fail_start

    def recognize_event(self, event, language):
        self.calls.append(("recognize_event", event, language))
        return not self.fail_event

    def write_audio(self, ulaw):
        self.audio.append(ulaw)
        if self.states:
            return self.states.pop(0)
        return BackendState.CONTINUING

    def response_count(self):
        return self.responses

    def result_count(self):
        return len(self.results)

    def result_at(self, index):
        return self.results[index]

    def stop_recognition(self):
        self.calls.append(("stop_recognition",))

    def close(self):
        self.closed = True


class FakeBackend(RecognitionBackend):

    def __init__(self):
        self.general_log = None
        self.call_log = None
        self.sessions: List[FakeBackendSession] = []

    def init(self, general_log, call_log):
        self.general_log = general_log
        self.call_log = call_log

    def create_session(self, owner):
        session = FakeBackendSession(owner)
        self.sessions.append(session)
        return session

    @property
    def last(self) -> FakeBackendSession:
        return self.sessions[-1]


class FakeSynthesizer(Synthesizer):

    def __init__(self, payload: bytes = b"RIFF-fake-wave"):
        self.payload = payload
        self.calls: List[Dict[str, Any]] = []
        self.fail = False
        self.output_dir = None

    def synthesize(self, auth_key, text, language, voice=None, output_path=None):
        self.calls.append({"auth_key": auth_key, "text": text, "language": language, "output_path": output_path})
        if self.fail:
            raise SynthesisError("synthesis service unavailable")
        if self.output_dir is not None:
            output_path = os.path.join(self.output_dir, f"tts-{len(self.calls)}.wav")
        with open(output_path, "wb") as f:
            f.write(self.payload)
        return output_path


def pcm_frame(amplitude: int, ms: int = 20) -> bytes:
    """Square-wave PCM16 frame whose average absolute level is `amplitude`."""
    samples = array('h', [amplitude if i % 2 else -amplitude for i in range(ms * 8)])
    return samples.tobytes()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def engine_config(tmp_path):
    """Snapshot with call logging into tmp_path and one known agent."""
    return EngineConfig(
        version=1,
        service_key='{"type": "service_account"}',
        endpoint="global.example.com",
        vad_voice_threshold=500,
        vad_voice_minimum_duration=40,
        vad_silence_minimum_duration=500,
        call_log_location=str(tmp_path / "calls" / "{application}") + "/",
        enable_call_logs=True,
        agents=AgentDirectory(agents=(
            LogicalAgent(name="billing", project_id="billing-proj", service_key='{"k": "billing"}',
                         endpoint="billing.example.com"),
            LogicalAgent(name="support", project_id="support-proj"),
        )),
    )
