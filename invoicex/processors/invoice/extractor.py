"""
Invoice Extraction Contract

Builds the instructions and response schema sent to the extraction
service, optionally extended by a vendor template, and validates what comes
back.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError, create_model

from invoicex.exceptions import ExtractionServiceError
from invoicex.models.invoice import (
    CustomFieldDefinition,
    ExtractedInvoice,
    ExtractionResult,
    TemplateConfig,
)
from invoicex.processors.llm.base_provider import ExtractionProvider
from invoicex.processors.llm.prompt_manager import PromptManager

logger = logging.getLogger(__name__)

PROMPT_NAME = 'invoice_extraction'

TYPE_HINTS = {
    'string': 'string or null',
    'number': 'number or null',
    'boolean': 'boolean or null',
    'date': 'string or null',
}

FIELD_TYPES: Dict[str, Any] = {
    'string': str,
    'number': float,
    'boolean': bool,
    'date': str,
}


def build_extraction_schema(custom_fields: List[CustomFieldDefinition]) -> Type[BaseModel]:
    """
    Build the response model for a set of custom fields

    Every custom field is nullable: ``required`` only shapes the prompt,
    missing values are reported by the template's validation rules.
    """
    if not custom_fields:
        return ExtractedInvoice
    field_definitions: Dict[str, Tuple[Any, Any]] = {
        field.name: (Optional[FIELD_TYPES[field.type]], None)
        for field in custom_fields
    }
    return create_model('TemplateExtractedInvoice', __base__=ExtractedInvoice, **field_definitions)


class InvoiceExtractor:
    """
    Runs template-aware extraction against a provider

    Usage:
        extractor = InvoiceExtractor()
        result = await extractor.extract(provider, text, template)
        result.data['invoiceNumber']
    """

    def __init__(self, prompt_manager: Optional[PromptManager] = None):
        self.prompt_manager = prompt_manager or PromptManager()

    def build_instructions(self, template: Optional[TemplateConfig] = None) -> str:
        """Render the system instructions, with template additions if any"""
        return self.prompt_manager.render(
            PROMPT_NAME,
            'system_prompt',
            custom_prompt=(template.custom_prompt or '').strip() if template else '',
            custom_fields=template.custom_fields if template else [],
            type_hints=TYPE_HINTS
        )

    async def extract(
        self,
        provider: ExtractionProvider,
        text: str,
        template: Optional[TemplateConfig] = None
    ) -> ExtractionResult:
        """
        Extract invoice data from text

        Returns:
            ExtractionResult whose ``data`` uses the camelCase payload keys and
            includes template and vendor-specific fields

        Raises:
            ExtractionServiceError: If the call fails or the payload does not
                fit the schema
        """
        instructions = self.build_instructions(template)
        user_prompt = self.prompt_manager.render(PROMPT_NAME, 'user_prompt', content=text)
        try:
            result = await provider.extract(text, instructions, user_prompt=user_prompt)
        except ExtractionServiceError:
            raise
        except Exception as e:
            raise ExtractionServiceError(f"AI extraction failed: {e}") from e

        schema = build_extraction_schema(template.custom_fields if template else [])
        try:
            invoice = schema.model_validate(result.data)
        except ValidationError as e:
            raise ExtractionServiceError(
                f"AI extraction failed: response does not match the expected shape ({e.error_count()} errors)"
            ) from e

        data = invoice.model_dump(by_alias=True)
        logger.debug(f"Extracted {len(data)} fields using {result.usage.total_tokens} tokens")
        return result.model_copy(update={'data': data})
