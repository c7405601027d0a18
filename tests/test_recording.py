"""
Unit tests for utterance recordings.
"""

import json
import threading
from datetime import datetime

import pytest

from dfspeech.call_log import CallEventLogger
from dfspeech.recording import RecordingStream, UtteranceRecorder


@pytest.fixture
def call_log(tmp_path):
    logger = CallEventLogger(threading.RLock(), enabled=True)
    logger.open("sid", "ivr", str(tmp_path) + "/", datetime(2024, 1, 1, 0, 1, 2))
    yield logger
    logger.close()


def events(call_log):
    call_log.close()
    with open(call_log.path) as f:
        return [json.loads(line) for line in f]


class TestRecordingStream:

    def test_failed_open_not_retried(self, tmp_path):
        stream = RecordingStream("pre", threading.RLock())
        assert not stream.open(str(tmp_path / "missing" / "x.ul"))
        assert stream.open_attempted
        assert not stream.wants_open()

        stream.reset()
        assert stream.wants_open()

    def test_close_reports_whether_open(self, tmp_path):
        stream = RecordingStream("post", threading.RLock())
        assert not stream.close()
        stream.open(str(tmp_path / "x.ul"))
        stream.write(b"\x01\x02")
        assert stream.close()
        assert (tmp_path / "x.ul").read_bytes() == b"\x01\x02"

    def test_write_without_open_is_noop(self):
        stream = RecordingStream("pre", threading.RLock())
        stream.write(b"\x00")
        assert not stream.is_open


class TestUtteranceRecorder:

    def test_pre_only_captures_lead_in_and_speech(self, call_log, tmp_path):
        """Pre on / post off: every routed frame lands in pre, no post file."""
        recorder = UtteranceRecorder(threading.RLock(), call_log, lambda: 1)

        recorder.record(b"\x10\x11", speaking=False, pre_enabled=True, post_enabled=False)
        recorder.record(b"\x12", speaking=True, pre_enabled=True, post_enabled=False)
        recorder.close()

        assert (tmp_path / "0102_sid_pre_1.ul").read_bytes() == b"\x10\x11\x12"
        assert not (tmp_path / "0102_sid_post_1.ul").exists()

    def test_post_only_while_speaking(self, call_log, tmp_path):
        recorder = UtteranceRecorder(threading.RLock(), call_log, lambda: 3)

        recorder.record(b"\x01", speaking=False, pre_enabled=False, post_enabled=True)
        recorder.record(b"\x02", speaking=True, pre_enabled=False, post_enabled=True)
        recorder.close()

        assert (tmp_path / "0102_sid_post_3.ul").read_bytes() == b"\x02"

    def test_start_and_stop_events(self, call_log, tmp_path):
        recorder = UtteranceRecorder(threading.RLock(), call_log, lambda: 1)
        recorder.record(b"\x01", speaking=True, pre_enabled=True, post_enabled=True)
        recorder.close()

        names = [e["log_event"] for e in events(call_log)]
        assert names == ["pre_recording_start", "post_recording_start",
                         "pre_recording_stop", "post_recording_stop"]

    def test_start_event_carries_filename(self, call_log, tmp_path):
        recorder = UtteranceRecorder(threading.RLock(), call_log, lambda: 1)
        recorder.record(b"\x01", speaking=False, pre_enabled=True, post_enabled=False)
        recorder.close(only_open=True)

        logged = events(call_log)
        assert logged[0]["filename"] == str(tmp_path / "0102_sid_pre_1.ul")
        assert [e["log_event"] for e in logged] == ["pre_recording_start", "pre_recording_stop"]

    def test_requires_call_log_location(self, tmp_path):
        call_log = CallEventLogger(threading.RLock(), enabled=False)
        recorder = UtteranceRecorder(threading.RLock(), call_log, lambda: 1)

        recorder.record(b"\x01", speaking=True, pre_enabled=True, post_enabled=True)

        assert not recorder.pre.is_open
        assert recorder.pre.wants_open()

    def test_pre_active(self, call_log):
        recorder = UtteranceRecorder(threading.RLock(), call_log, lambda: 1)
        assert not recorder.pre_active(False)
        assert recorder.pre_active(True)
        recorder.pre.open_attempted = True
        assert not recorder.pre_active(True)
