"""
Extraction service adapters

Providers implement ``extract(text, instructions)`` and
``estimate_cost(usage)``; ``ProviderFactory`` selects one by name.
"""

from .base_provider import ExtractionProvider, ProviderSettings
from .openai_compatible import OpenAICompatibleProvider, ProviderProfile
from .provider_factory import ProviderFactory
from .prompt_manager import PromptManager

__all__ = [
    'ExtractionProvider',
    'ProviderSettings',
    'OpenAICompatibleProvider',
    'ProviderProfile',
    'ProviderFactory',
    'PromptManager',
]
