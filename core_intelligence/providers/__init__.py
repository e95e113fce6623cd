"""
Abstract base classes for swappable providers.
Enables dependency injection and flexible component swapping.
"""

from abc import ABC, abstractmethod
from typing import Optional
import logging

from domain.models import SpeechRecognition


class BaseProvider(ABC):
    """Base class for all providers."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    @abstractmethod
    def initialize(self) -> None:
        """Initialize provider. Called after instantiation."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if provider is available and credentials are valid."""
        pass


class LLMProviderBase(BaseProvider):
    """Abstract base for LLM providers."""

    @abstractmethod
    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        """Generate response from LLM."""
        pass


class SpeechProviderBase(BaseProvider):
    """Abstract base for speech-to-text providers."""

    @abstractmethod
    def recognize(self, audio: bytes, content_type: str) -> SpeechRecognition:
        """Recognize speech in an audio payload."""
        pass
