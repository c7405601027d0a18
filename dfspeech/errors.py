"""Exception hierarchy for the speech engine core."""


class SpeechError(Exception):
    """Base class for errors raised to the host."""


class InvalidPropertyError(SpeechError, ValueError):
    """Unknown session property, or a value the property does not accept."""

    def __init__(self, name: str, message: str):
        super().__init__(message)
        self.name = name


class InvalidGrammarError(SpeechError, ValueError):
    """Grammar directive passed to activate() is not understood."""


class UnsupportedOperationError(SpeechError):
    """Host invoked an engine hook this engine does not implement."""


class ConfigError(SpeechError):
    """Configuration could not be loaded."""


class SynthesisError(SpeechError):
    """Text-to-speech collaborator failed to produce audio."""
