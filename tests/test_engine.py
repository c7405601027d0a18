"""
Tests for SpeechEngine: startup, backend logging hooks and configuration
reload semantics for live sessions.
"""

import gc
import json
import textwrap

import pytest
import structlog

from dfspeech.backend import BackendLogLevel
from dfspeech.config.store import ConfigStore
from dfspeech.engine import SpeechEngine, backend_call_log, backend_general_log


def write_config(path, threshold, project="proj-a", key='{"key": "a"}'):
    path.write_text(textwrap.dedent(f"""
        general:
          service_key: '{key}'
          vad_voice_threshold: {threshold}
          enable_call_logs: no
        agents:
          support:
            project_id: {project}
    """))


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "dfspeech.yaml"
    write_config(path, 600)
    return path


@pytest.fixture
def engine(config_file, backend, synthesizer):
    engine = SpeechEngine(backend, synthesizer, config_path=str(config_file))
    engine.start()
    return engine


class TestStart:

    def test_loads_config_and_initializes_backend(self, engine, backend):
        assert engine.config().vad_voice_threshold == 600
        assert backend.general_log is backend_general_log
        assert backend.call_log is backend_call_log

    def test_missing_file_uses_defaults(self, tmp_path, backend):
        engine = SpeechEngine(backend, config_path=str(tmp_path / "absent.yaml"))
        config = engine.start()
        assert config.vad_voice_threshold == 512
        assert len(config.agents) == 0

    def test_start_is_idempotent(self, engine, backend):
        version = engine.config().version
        engine.start()
        assert engine.config().version == version

    def test_accepts_external_store(self, config_file, backend):
        store = ConfigStore(str(config_file))
        engine = SpeechEngine(backend, config_store=store)
        engine.start()
        assert engine.config() is store.current()


class TestReload:

    def test_existing_sessions_keep_their_snapshot(self, engine, config_file, backend):
        """Sessions created before reload keep old thresholds and credentials."""
        before = engine.create_session()
        before.activate("builtin:grammar/support")

        write_config(config_file, 900, project="proj-b", key='{"key": "b"}')
        assert engine.reload()

        after = engine.create_session()
        after.activate("builtin:grammar/support")

        assert before.get("voice_threshold") == "600"
        assert before.get("project_id") == "proj-a"
        assert backend.sessions[0].auth_key == '{"key": "a"}'

        assert after.get("voice_threshold") == "900"
        assert after.get("project_id") == "proj-b"
        assert backend.sessions[1].auth_key == '{"key": "b"}'

        before.destroy()
        after.destroy()

    def test_failed_reload_keeps_current(self, engine, config_file):
        current = engine.config()
        config_file.write_text("general: [unclosed")
        assert not engine.reload()
        assert engine.config() is current

    def test_superseded_snapshot_released(self, engine, backend):
        session = engine.create_session()
        old_version = session.config.version
        assert engine.reload()
        assert old_version in engine.config_store.live_versions()

        session.destroy()
        backend.sessions.clear()
        del session
        gc.collect()
        assert old_version not in engine.config_store.live_versions()


class TestBackendHooks:

    def test_general_log_formats_message(self):
        with structlog.testing.capture_logs() as logs:
            backend_general_log(BackendLogLevel.WARNING, "client.cc", 12, "Write", "stream %s closed: %d", "s1", 3)
        assert logs[0]["event"] == "stream s1 closed: 3"
        assert logs[0]["log_level"] == "warning"
        assert logs[0]["line"] == 12

    def test_general_log_bad_format_keeps_text(self):
        with structlog.testing.capture_logs() as logs:
            backend_general_log(0, "f", 1, "fn", "no placeholders", "extra")
        assert logs[0]["event"] == "no placeholders extra"
        assert logs[0]["log_level"] == "debug"

    def test_call_log_routes_to_owner(self, tmp_path, backend, engine_config):
        engine = SpeechEngine(backend)
        engine.config_store.publish(engine_config)
        session = engine.create_session()
        session.start()

        assert backend.last.owner is session
        backend_call_log(backend.last.owner, "intent_detected", {"intent": "yes"})

        session.call_log.close()
        with open(session.call_log.path) as f:
            logged = [json.loads(line) for line in f]
        assert logged[-1]["log_type"] == "DIALOGFLOW"
        assert logged[-1]["intent"] == "yes"
        session.destroy()
