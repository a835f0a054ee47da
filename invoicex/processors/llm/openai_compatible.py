"""
OpenAI-compatible extraction provider

One implementation serves every provider that speaks the OpenAI chat
completions API; providers differ only by their profile (base URL, default
model, pricing).
"""

import json
import re
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from openai import AsyncOpenAI, OpenAIError

from invoicex.exceptions import ExtractionServiceError
from invoicex.models.invoice import ExtractionResult, TokenUsage
from .base_provider import ExtractionProvider, ProviderSettings

logger = logging.getLogger(__name__)

DEFAULT_USER_PROMPT = "Extract data from this invoice/receipt:\n\n{text}"


@dataclass(frozen=True)
class ProviderProfile:
    """Static description of an OpenAI-compatible provider"""
    name: str
    default_model: str
    base_url: Optional[str] = None
    # model -> (USD per 1M input tokens, USD per 1M output tokens)
    pricing: Dict[str, Tuple[float, float]] = field(default_factory=dict)


OPENAI_PROFILE = ProviderProfile(
    name='openai',
    default_model='gpt-4o-mini',
    pricing={
        'gpt-4o': (5.0, 15.0),
        'gpt-4o-mini': (0.15, 0.6),
        'gpt-4-turbo': (10.0, 30.0),
        'gpt-3.5-turbo': (0.5, 1.5),
    },
)

DEEPSEEK_PROFILE = ProviderProfile(
    name='deepseek',
    default_model='deepseek-chat',
    base_url='https://api.deepseek.com',
    pricing={
        'deepseek-chat': (0.14, 0.28),
    },
)

OPENROUTER_PROFILE = ProviderProfile(
    name='openrouter',
    default_model='openai/gpt-4o-mini',
    base_url='https://openrouter.ai/api/v1',
)


def clean_json_response(content: str) -> str:
    """Remove markdown code fences from a model response"""
    content = content.strip()
    if content.startswith('```json'):
        content = content[7:]
    if content.startswith('```'):
        content = content[3:]
    if content.endswith('```'):
        content = content[:-3]
    return content.strip()


def parse_json_object(content: str) -> Dict[str, Any]:
    """
    Parse a JSON object from a model response

    Tries the cleaned response first, then the outermost ``{...}`` span.

    Raises:
        ExtractionServiceError: If no JSON object can be parsed
    """
    cleaned = clean_json_response(content)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r'\{.*\}', cleaned, re.DOTALL)
        if not match:
            raise ExtractionServiceError("AI extraction failed: response is not valid JSON")
        try:
            data = json.loads(match.group())
        except json.JSONDecodeError as e:
            raise ExtractionServiceError(f"AI extraction failed: response is not valid JSON ({e})")

    if not isinstance(data, dict):
        raise ExtractionServiceError("AI extraction failed: response is not a JSON object")
    return data


class OpenAICompatibleProvider(ExtractionProvider):
    """
    Extraction provider for OpenAI-compatible chat completion APIs

    Usage:
        provider = OpenAICompatibleProvider(
            ProviderSettings(provider='deepseek', api_key='...'),
            DEEPSEEK_PROFILE
        )
        result = await provider.extract(text, instructions)
        cost = provider.estimate_cost(result.usage)
    """

    def __init__(self, settings: ProviderSettings, profile: ProviderProfile = OPENAI_PROFILE):
        self.profile = profile
        self.name = profile.name
        super().__init__(settings)
        self.model = settings.model or profile.default_model
        self.client = AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url or profile.base_url
        )

    async def extract(
        self,
        text: str,
        instructions: str,
        *,
        user_prompt: Optional[str] = None
    ) -> ExtractionResult:
        messages = [
            {"role": "system", "content": instructions},
            {"role": "user", "content": user_prompt or DEFAULT_USER_PROMPT.format(text=text)},
        ]
        params: Dict[str, Any] = {
            'model': self.model,
            'messages': messages,
            'temperature': self.settings.temperature,
            'response_format': {"type": "json_object"},
        }
        if self.settings.max_tokens:
            params['max_tokens'] = self.settings.max_tokens

        try:
            response = await self.client.chat.completions.create(**params)
        except OpenAIError as e:
            raise ExtractionServiceError(f"AI extraction failed: {e}") from e

        if not response.choices or not response.choices[0].message.content:
            raise ExtractionServiceError("AI extraction failed: empty response from provider")

        data = parse_json_object(response.choices[0].message.content)
        usage = TokenUsage()
        if response.usage:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )

        logger.debug(
            f"{self.name} extraction used {usage.total_tokens} tokens with {self.model}"
        )
        return ExtractionResult(data=data, usage=usage, cost=self.estimate_cost(usage))

    def estimate_cost(self, usage: TokenUsage) -> float:
        input_price, output_price = self.profile.pricing.get(self.model, (0.0, 0.0))
        return (
            usage.prompt_tokens * input_price / 1_000_000
            + usage.completion_tokens * output_price / 1_000_000
        )

    async def aclose(self) -> None:
        await self.client.close()
