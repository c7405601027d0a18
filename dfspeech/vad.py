"""
Energy-based endpointer.

Each 8 kHz PCM16 frame is reduced to an average absolute level and compared
against a threshold. Two millisecond counters drive the state machine:

- state_duration: time spent in the current state (diagnostic only)
- change_duration: cumulative time of audio that disagrees with the current
  state; reaching the voice/silence minimum fires a transition

START --(loud for voice_minimum_duration)--> SPEAKING
SPEAKING --(quiet for silence_minimum_duration)--> SILENT

SILENT is terminal until the session is restarted.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from dfspeech.utils.audio import calculate_audio_level, frame_duration_ms

START_OF_SPEECH = "start_of_speech"
END_OF_SPEECH = "end_of_speech"


class VADState(Enum):
    START = "start"
    SPEAKING = "speaking"
    SILENT = "silent"


@dataclass(frozen=True)
class VADParams:
    """Tuning values; thresholds are 0..65535, durations in ms."""
    voice_threshold: int = 512
    voice_minimum_duration: int = 40
    silence_minimum_duration: int = 500


@dataclass(frozen=True)
class VADStatus:
    state: VADState = VADState.START
    state_duration: int = 0
    change_duration: int = 0


@dataclass(frozen=True)
class VADDecision:
    """Outcome of classifying one frame."""
    status: VADStatus
    previous_state: VADState
    level: int
    frame_ms: int
    event: Optional[str] = None

    @property
    def started_speaking(self) -> bool:
        return self.previous_state is VADState.START and self.status.state is VADState.SPEAKING


def step(level: int, frame_ms: int, params: VADParams, status: VADStatus) -> VADDecision:
    """Advance the state machine by one frame of the given level and length."""
    state = status.state
    state_duration = status.state_duration + frame_ms
    change_duration = status.change_duration

    loud = level >= params.voice_threshold
    if state is VADState.SPEAKING:
        change_duration = 0 if loud else change_duration + frame_ms
    else:
        change_duration = change_duration + frame_ms if loud else 0

    event = None
    if state is VADState.START:
        if change_duration >= params.voice_minimum_duration:
            state = VADState.SPEAKING
            change_duration = 0
            state_duration = 0
            event = START_OF_SPEECH
    elif state is VADState.SPEAKING:
        if change_duration >= params.silence_minimum_duration:
            state = VADState.SILENT
            change_duration = 0
            state_duration = 0
            event = END_OF_SPEECH

    return VADDecision(
        status=replace(status, state=state, state_duration=state_duration, change_duration=change_duration),
        previous_state=status.state,
        level=level,
        frame_ms=frame_ms,
        event=event,
    )


def classify(frame: bytes, params: VADParams, status: VADStatus) -> VADDecision:
    """Classify one signed-linear frame against the current status."""
    return step(calculate_audio_level(frame), frame_duration_ms(frame), params, status)
