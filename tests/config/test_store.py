"""
Tests for load_config and the hot-swappable ConfigStore.

Tests cover:
- Loading the example configuration end to end
- Snapshot immutability and versioning
- Reload success and failure semantics
- Agent resolution
"""

import gc
import textwrap
import threading

import pytest
from pydantic import ValidationError

from dfspeech.config import ConfigStore, EngineConfig, build_config, load_config
from dfspeech.config.credentials import SERVICE_KEY_ENV
from dfspeech.errors import ConfigError


@pytest.fixture(autouse=True)
def clear_env(monkeypatch):
    monkeypatch.delenv(SERVICE_KEY_ENV, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "dfspeech.yaml"
    path.write_text(textwrap.dedent("""
        general:
          service_key: '{"global": 1}'
          endpoint: global.example.com
          vad_voice_threshold: 640
        agents:
          support:
            project_id: support-proj
          billing:
            project_id: billing-proj
            endpoint: billing.example.com
            service_key: '{"billing": 1}'
    """))
    return path


class TestLoadConfig:

    def test_example_config(self):
        """The shipped example loads; unreadable key files degrade to empty keys."""
        config = load_config("config/dfspeech.example.yaml")

        assert isinstance(config, EngineConfig)
        assert config.service_key == ""
        assert config.vad_silence_minimum_duration == 500
        assert config.enable_call_logs is True
        assert [agent.name for agent in config.agents] == ["support", "billing"]

    def test_values(self, config_file):
        config = load_config(str(config_file), version=3)
        assert config.version == 3
        assert config.vad_voice_threshold == 640
        assert config.vad_voice_minimum_duration == 40
        assert config.service_key == '{"global": 1}'
        assert len(config.agents) == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(str(tmp_path / "absent.yaml"))

    def test_structural_error(self):
        with pytest.raises(ConfigError):
            build_config({'general': 'not a mapping'})

    def test_snapshot_is_frozen(self, config_file):
        config = load_config(str(config_file))
        with pytest.raises(ValidationError):
            config.vad_voice_threshold = 1


class TestResolveAgent:

    def test_known_agent_with_own_credentials(self, config_file):
        credentials = load_config(str(config_file)).resolve_agent("BILLING")
        assert credentials.project_id == "billing-proj"
        assert credentials.endpoint == "billing.example.com"
        assert credentials.service_key == '{"billing": 1}'

    def test_known_agent_inherits_globals(self, config_file):
        credentials = load_config(str(config_file)).resolve_agent("support")
        assert credentials.project_id == "support-proj"
        assert credentials.endpoint == "global.example.com"
        assert credentials.service_key == '{"global": 1}'

    def test_unknown_agent_is_project_id(self, config_file):
        credentials = load_config(str(config_file)).resolve_agent("my-project-99")
        assert credentials.project_id == "my-project-99"
        assert credentials.endpoint == "global.example.com"


class TestConfigStore:

    def test_defaults_before_load(self):
        store = ConfigStore()
        assert store.current().version == 0
        assert store.current().vad_voice_threshold == 512

    def test_load_falls_back_to_defaults(self, tmp_path):
        store = ConfigStore(str(tmp_path / "absent.yaml"))
        snapshot = store.load()
        assert snapshot is store.current()
        assert snapshot.version == 1
        assert len(snapshot.agents) == 0

    def test_reload_publishes_new_version(self, config_file):
        store = ConfigStore(str(config_file))
        first = store.load()

        config_file.write_text("general:\n  vad_voice_threshold: 100\n")
        assert store.reload()

        second = store.current()
        assert second is not first
        assert second.version == first.version + 1
        assert second.vad_voice_threshold == 100
        assert first.vad_voice_threshold == 640

    def test_failed_reload_keeps_previous(self, config_file):
        store = ConfigStore(str(config_file))
        first = store.load()

        config_file.write_text("general: [broken")
        assert not store.reload()
        assert store.current() is first

    def test_publish_stamps_version(self):
        store = ConfigStore()
        published = store.publish(EngineConfig(version=99, endpoint="x"))
        assert published.version == 1
        assert store.current() is published

    def test_live_versions_track_holders(self, config_file):
        store = ConfigStore(str(config_file))
        held = store.load()
        assert store.reload()
        assert store.reload()

        gc.collect()
        assert store.live_versions() == [held.version, store.current().version]

    def test_failed_reload_does_not_consume_version(self, config_file):
        """Versions stay contiguous across failed loads and reloads."""
        store = ConfigStore(str(config_file))
        assert store.load().version == 1

        good = config_file.read_text()
        config_file.write_text("general: [broken")
        assert not store.reload()
        config_file.write_text(good)
        assert store.reload()

        assert store.current().version == 2

    def test_concurrent_reloads_never_go_backwards(self, config_file):
        store = ConfigStore(str(config_file))
        store.load()
        seen = []
        errors = []

        def reloader():
            try:
                for _ in range(20):
                    store.reload()
                    seen.append(store.current().version)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=reloader) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert store.current().version == 81
        assert max(seen) == 81
