"""
Extraction Provider Interface

A provider turns document text plus instructions into structured JSON and
reports token usage. Providers are created per processing call from
explicit settings; nothing is shared at module level.
"""

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel, Field

from invoicex.exceptions import ProviderConfigError
from invoicex.models.invoice import ExtractionResult, TokenUsage


class ProviderSettings(BaseModel):
    """Resolved provider selection and credentials"""
    provider: str = 'openai'
    api_key: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = None
    temperature: float = Field(0.1, ge=0.0, le=2.0)
    max_tokens: Optional[int] = None


class ExtractionProvider(ABC):
    """Base class for extraction providers"""

    name: str = 'base'

    def __init__(self, settings: ProviderSettings):
        self.settings = settings
        self.validate_config()

    def validate_config(self) -> None:
        """
        Raises:
            ProviderConfigError: If no API key is configured
        """
        if not self.settings.api_key:
            raise ProviderConfigError(f"API key is required for provider '{self.name}'")

    @abstractmethod
    async def extract(
        self,
        text: str,
        instructions: str,
        *,
        user_prompt: Optional[str] = None
    ) -> ExtractionResult:
        """
        Extract structured JSON from text

        Args:
            text: Document text
            instructions: System instructions describing the JSON contract
            user_prompt: Complete user message; defaults to the standard
                extraction request wrapping ``text``

        Returns:
            ExtractionResult with the parsed JSON object and token usage

        Raises:
            ExtractionServiceError: On service errors or non-JSON output
        """
        pass

    @abstractmethod
    def estimate_cost(self, usage: TokenUsage) -> float:
        """Estimated cost in USD for the given usage"""
        pass

    async def aclose(self) -> None:
        """Release client resources"""
        return None
