from typing import Dict, List

from invoicex.exceptions import ProviderConfigError
from .base_provider import ExtractionProvider, ProviderSettings
from .openai_compatible import (
    OpenAICompatibleProvider,
    ProviderProfile,
    OPENAI_PROFILE,
    DEEPSEEK_PROFILE,
    OPENROUTER_PROFILE,
)


class ProviderFactory:
    """
    Factory for extraction providers keyed by provider name

    Every call to ``create`` returns a new provider with its own client.
    """

    _profiles: Dict[str, ProviderProfile] = {
        'openai': OPENAI_PROFILE,
        'deepseek': DEEPSEEK_PROFILE,
        'openrouter': OPENROUTER_PROFILE,
    }

    @classmethod
    def register_provider(cls, profile: ProviderProfile) -> None:
        """Register an additional OpenAI-compatible provider"""
        cls._profiles[profile.name.lower()] = profile

    @classmethod
    def create(cls, settings: ProviderSettings) -> ExtractionProvider:
        """
        Create a provider for the given settings

        Raises:
            ProviderConfigError: If the provider is unknown or has no API key
        """
        profile = cls._profiles.get(settings.provider.lower())
        if profile is None:
            raise ProviderConfigError(f"Unsupported AI provider: {settings.provider}")
        return OpenAICompatibleProvider(settings, profile)

    @classmethod
    def available_providers(cls) -> List[str]:
        return sorted(cls._profiles)
