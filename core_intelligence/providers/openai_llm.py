"""
OpenAI LLM provider implementation.
"""

from typing import List, Optional

from llama_index.core.llms import ChatMessage, MessageRole
from llama_index.llms.openai import OpenAI

from core_intelligence.providers import LLMProviderBase
from shared_utils.constants import Defaults, LogScope
from shared_utils.error_handler import CollaboratorError


def build_chat_messages(prompt: str, system_prompt: Optional[str] = None) -> List[ChatMessage]:
    messages = []
    if system_prompt:
        messages.append(ChatMessage(role=MessageRole.SYSTEM, content=system_prompt))
    messages.append(ChatMessage(role=MessageRole.USER, content=prompt))
    return messages


class OpenAILLMProvider(LLMProviderBase):
    """OpenAI chat-completions provider."""

    def __init__(self, model_id: str, api_key: str, temperature: float = Defaults.LLM_TEMPERATURE):
        super().__init__(name=f"OpenAILLM({model_id})")
        self.model_id = model_id
        self.api_key = api_key
        self.temperature = temperature
        self._llm = None

    def initialize(self) -> None:
        """Initialize OpenAI LLM client."""
        try:
            self._llm = OpenAI(
                model=self.model_id,
                api_key=self.api_key,
                temperature=self.temperature,
            )
            self.logger.info(
                "Initialized OpenAI LLM provider",
                extra={"scope": LogScope.PROVIDER, "model_id": self.model_id}
            )
        except Exception as e:
            self.logger.error(
                "Failed to initialize OpenAI LLM provider",
                extra={"scope": LogScope.PROVIDER, "error": str(e)}
            )
            raise

    def is_available(self) -> bool:
        """Check if OpenAI LLM is available."""
        return self._llm is not None

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        """Generate a chat completion, optionally constrained to a JSON object."""
        if not self.is_available():
            raise RuntimeError("OpenAI LLM provider not initialized")

        kwargs = {"response_format": {"type": "json_object"}} if json_mode else {}
        try:
            response = self._llm.chat(build_chat_messages(prompt, system_prompt), **kwargs)
        except Exception as e:
            self.logger.error(
                "LLM generation failed",
                extra={"scope": LogScope.PROVIDER, "error": str(e)}
            )
            raise CollaboratorError("OpenAI", str(e), context={"model_id": self.model_id}) from e
        return response.message.content or ""
