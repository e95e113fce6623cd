"""
Factory for creating configured provider instances.
Handles provider instantiation with dependency injection.
"""

from typing import Optional
import logging

from core_intelligence.providers import LLMProviderBase, SpeechProviderBase
from core_intelligence.providers.bedrock_llm import BedrockLLMProvider
from core_intelligence.providers.openai_llm import OpenAILLMProvider
from core_intelligence.providers.openai_speech import OpenAISpeechProvider
from shared_utils.config_loader import Settings, get_settings
from shared_utils.constants import LLMProvider, LogScope, SpeechProvider


logger = logging.getLogger(__name__)


class LLMProviderFactory:
    """Factory for creating LLM providers."""

    @staticmethod
    def create(settings: Optional[Settings] = None) -> Optional[LLMProviderBase]:
        """Create configured LLM provider.

        Returns:
            Initialized LLM provider, or None when LLM_PROVIDER=none.

        Raises:
            ValueError: If config is invalid.
        """
        settings = settings or get_settings()
        llm_provider = settings.llm_provider

        logger.info(
            "Creating LLM provider",
            extra={"scope": LogScope.CONFIG, "provider": llm_provider}
        )

        if llm_provider == LLMProvider.NONE.value:
            return None

        try:
            if llm_provider == LLMProvider.OPENAI.value:
                if not settings.openai_api_key:
                    raise ValueError("OPENAI_API_KEY not configured")

                provider = OpenAILLMProvider(
                    model_id=settings.openai_llm_model_id,
                    api_key=settings.openai_api_key,
                    temperature=settings.llm_temperature,
                )
            elif llm_provider == LLMProvider.BEDROCK.value:
                if not settings.bedrock_region or not settings.bedrock_llm_model_id:
                    raise ValueError("BEDROCK_REGION or BEDROCK_LLM_MODEL_ID not configured")

                provider = BedrockLLMProvider(
                    model_id=settings.bedrock_llm_model_id,
                    region=settings.bedrock_region,
                    temperature=settings.llm_temperature,
                )
            else:
                raise ValueError(f"Unknown LLM provider: {llm_provider}")

            provider.initialize()
            return provider

        except Exception as e:
            logger.error(
                "Failed to create LLM provider",
                extra={"scope": LogScope.CONFIG, "provider": llm_provider, "error": str(e)}
            )
            raise


class SpeechProviderFactory:
    """Factory for creating speech-to-text providers."""

    @staticmethod
    def create(settings: Optional[Settings] = None) -> Optional[SpeechProviderBase]:
        """Create configured speech provider, or None when SPEECH_PROVIDER=none."""
        settings = settings or get_settings()
        speech_provider = settings.speech_provider

        logger.info(
            "Creating speech provider",
            extra={"scope": LogScope.CONFIG, "provider": speech_provider}
        )

        if speech_provider == SpeechProvider.NONE.value:
            return None
        if speech_provider != SpeechProvider.OPENAI.value:
            raise ValueError(f"Unknown speech provider: {speech_provider}")
        if not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY not configured")

        provider = OpenAISpeechProvider(
            api_key=settings.openai_api_key,
            model_id=settings.speech_model_id,
            language=settings.transcription_language,
        )
        provider.initialize()
        return provider
