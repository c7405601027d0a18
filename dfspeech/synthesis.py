"""Text-to-speech collaborator used when the backend returns text but no audio."""

from abc import ABC, abstractmethod
from typing import Optional


class Synthesizer(ABC):

    @abstractmethod
    def synthesize(
        self,
        auth_key: str,
        text: str,
        language: str,
        voice: Optional[str] = None,
        output_path: Optional[str] = None,
    ) -> str:
        """
        Render `text` to an audio file.

        Args:
            auth_key: Service key material for the synthesis service
            text: Text to speak
            language: Language code, e.g. "en-US"
            voice: Optional voice name hint
            output_path: File to write; the implementation picks one when None

        Returns:
            Path of the written audio file

        Raises:
            SynthesisError: If synthesis fails
        """
