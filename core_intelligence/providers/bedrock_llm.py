"""
Bedrock LLM provider implementation.
"""

from typing import Optional

from llama_index.llms.bedrock import Bedrock

from core_intelligence.providers import LLMProviderBase
from core_intelligence.providers.openai_llm import build_chat_messages
from shared_utils.constants import Defaults, LogScope
from shared_utils.error_handler import CollaboratorError


class BedrockLLMProvider(LLMProviderBase):
    """AWS Bedrock LLM provider.

    Bedrock has no JSON response mode; the extraction prompt alone
    constrains the output shape, and the boundary parser rejects the rest.
    """

    def __init__(self, model_id: str, region: str, temperature: float = Defaults.LLM_TEMPERATURE):
        super().__init__(name=f"BedrockLLM({model_id})")
        self.model_id = model_id
        self.region = region
        self.temperature = temperature
        self._llm = None

    def initialize(self) -> None:
        """Initialize Bedrock LLM client."""
        try:
            self._llm = Bedrock(
                model=self.model_id,
                region_name=self.region,
                temperature=self.temperature,
            )
            self.logger.info(
                "Initialized Bedrock LLM provider",
                extra={
                    "scope": LogScope.PROVIDER,
                    "model_id": self.model_id,
                    "region": self.region
                }
            )
        except Exception as e:
            self.logger.error(
                "Failed to initialize Bedrock LLM provider",
                extra={"scope": LogScope.PROVIDER, "error": str(e)}
            )
            raise

    def is_available(self) -> bool:
        """Check if Bedrock LLM is available."""
        return self._llm is not None

    def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        """Generate response from LLM."""
        if not self.is_available():
            raise RuntimeError("Bedrock LLM provider not initialized")

        try:
            response = self._llm.chat(build_chat_messages(prompt, system_prompt))
        except Exception as e:
            self.logger.error(
                "LLM generation failed",
                extra={"scope": LogScope.PROVIDER, "error": str(e)}
            )
            raise CollaboratorError("Bedrock", str(e), context={"model_id": self.model_id}) from e
        return response.message.content or ""
