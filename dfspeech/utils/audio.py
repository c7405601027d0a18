"""Helpers for the 8 kHz signed-linear audio the host delivers.

Frames are signed 16-bit PCM in host byte order, the same layout audioop
expects. audioop left the standard library in Python 3.13; there the
audioop-lts distribution provides the same module (see pyproject.toml).
"""

from array import array

import audioop

SAMPLE_RATE = 8000
SAMPLES_PER_MS = SAMPLE_RATE // 1000
SAMPLE_WIDTH = 2


def _whole_samples(frame: bytes) -> bytes:
    return frame[:len(frame) - (len(frame) % SAMPLE_WIDTH)]


def sample_count(frame: bytes) -> int:
    return len(frame) // SAMPLE_WIDTH


def frame_duration_ms(frame: bytes) -> int:
    """Frame length in whole milliseconds (truncating)."""
    return sample_count(frame) // SAMPLES_PER_MS


def calculate_audio_level(frame: bytes) -> int:
    """Integer mean of absolute sample values; 0 for an empty frame."""
    samples = array('h')
    samples.frombytes(_whole_samples(frame))
    if not samples:
        return 0
    return sum(abs(s) for s in samples) // len(samples)


def slin_to_ulaw(frame: bytes) -> bytes:
    """Compand signed-linear PCM16 to 8-bit mu-law, one byte per sample."""
    pcm = _whole_samples(frame)
    if not pcm:
        return b""
    return audioop.lin2ulaw(pcm, SAMPLE_WIDTH)
