"""
Endpointing, recording and call-logging core for a Dialogflow speech engine.

- engine: SpeechEngine, registered with the host, creates sessions
- session: SpeechSession, one recognition conversation per call
- vad: energy-based endpointer
- recording / call_log: per-utterance audio and per-call event files
- config: hot-swappable YAML configuration
- admin: reload/show commands and FastAPI router
"""

__version__ = "1.0.0"
