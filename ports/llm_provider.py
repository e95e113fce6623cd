"""
Port interfaces for the language-model and speech-to-text collaborators.

The concrete versions live in core_intelligence/providers/. Services depend
on these contracts only.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from domain.models import SpeechRecognition


@runtime_checkable
class LLMProviderPort(Protocol):
    """Abstract interface for LLM text generation."""

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        """Generate text from a prompt.

        Args:
            prompt: User prompt.
            system_prompt: Optional system instruction.
            json_mode: Ask the model for a single JSON object when supported.

        Returns:
            Raw generated text (not yet validated).

        Raises:
            CollaboratorError: If the model call fails.
        """
        ...


@runtime_checkable
class SpeechToTextPort(Protocol):
    """Abstract interface for speech recognition."""

    def recognize(self, audio: bytes, content_type: str) -> SpeechRecognition:
        """Recognize speech in an audio payload.

        Silence yields an empty segment list, not an error.

        Raises:
            CollaboratorError: If recognition fails or is cancelled.
        """
        ...
