"""
Tests for prompts and template-aware extraction
"""

from pathlib import Path

import pytest
import yaml

from invoicex.exceptions import ExtractionServiceError
from invoicex.models.invoice import CustomFieldDefinition, ExtractedInvoice, TemplateConfig
from invoicex.processors.invoice.extractor import InvoiceExtractor, build_extraction_schema
from invoicex.processors.llm.prompt_manager import PromptManager

from conftest import FakeProvider, INVOICE_DATA


@pytest.fixture
def template():
    return TemplateConfig(
        id='tpl_1',
        vendor_id='ven_1',
        name='Acme',
        custom_prompt='Amounts are printed with a comma as decimal separator.',
        custom_fields=[
            {'name': 'poNumber', 'type': 'string', 'required': True, 'description': 'Purchase order'},
            {'name': 'discount', 'type': 'number'},
        ]
    )


class TestPromptManager:
    """Tests for PromptManager"""

    def test_packaged_prompts(self):
        """Test the packaged prompts are found"""
        manager = PromptManager()
        assert manager.prompts_dir.exists()
        assert 'invoice_extraction' in manager.list_prompts()
        assert 'vendor_detection' in manager.list_prompts()

    def test_load_prompt_from_directory(self, tmp_path):
        """Test loading a prompt from a custom directory"""
        prompt_file = Path(tmp_path) / "greeting.yaml"
        with open(prompt_file, 'w') as f:
            yaml.dump({'system_prompt': 'Hello {{ name }}'}, f)

        manager = PromptManager(prompts_dir=str(tmp_path))

        assert manager.render('greeting', 'system_prompt', name='Ada') == 'Hello Ada'

    def test_missing_prompt(self, tmp_path):
        """Test a missing prompt file raises"""
        manager = PromptManager(prompts_dir=str(tmp_path))
        with pytest.raises(FileNotFoundError):
            manager.load_prompt('nope')

    def test_prompt_caching(self):
        """Test prompts are cached"""
        manager = PromptManager()
        assert manager.load_prompt('invoice_extraction') is manager.load_prompt('invoice_extraction')
        manager.clear_cache()
        assert manager._prompts_cache == {}


class TestInstructions:
    """Tests for InvoiceExtractor.build_instructions"""

    def test_default_instructions(self):
        """Test the base contract without a template"""
        instructions = InvoiceExtractor().build_instructions()

        assert '"invoiceNumber"' in instructions
        assert '"lineItems"' in instructions
        assert 'VENDOR-SPECIFIC INSTRUCTIONS' not in instructions
        assert 'ADDITIONAL FIELDS' not in instructions

    def test_template_instructions(self, template):
        """Test custom prompt and fields are appended"""
        instructions = InvoiceExtractor().build_instructions(template)

        assert 'VENDOR-SPECIFIC INSTRUCTIONS' in instructions
        assert 'comma as decimal separator' in instructions
        assert '- poNumber (string, required): Purchase order' in instructions
        assert '- discount (number, optional)' in instructions
        assert '"poNumber": "string or null"' in instructions
        assert '"discount": "number or null"' in instructions


class TestExtractionSchema:
    """Tests for build_extraction_schema"""

    def test_without_custom_fields(self):
        """Test the base model is used without custom fields"""
        assert build_extraction_schema([]) is ExtractedInvoice

    def test_custom_fields_are_nullable(self):
        """Test custom fields are typed and optional"""
        schema = build_extraction_schema([
            CustomFieldDefinition(name='poNumber', type='string', required=True),
            CustomFieldDefinition(name='discount', type='number'),
        ])
        invoice = schema.model_validate({'invoiceNumber': 'A', 'discount': '2.5'})

        assert invoice.poNumber is None
        assert invoice.discount == 2.5


class TestInvoiceExtractor:
    """Tests for InvoiceExtractor.extract"""

    @pytest.mark.asyncio
    async def test_extract(self):
        """Test a canonical payload comes back with camelCase keys"""
        provider = FakeProvider([INVOICE_DATA])

        result = await InvoiceExtractor().extract(provider, "Invoice INV-100")

        assert result.data['invoiceNumber'] == 'INV-100'
        assert result.data['totalAmount'] == 100.0
        assert result.data['lineItems'][0]['unitPrice'] == 50.0
        assert result.usage.total_tokens == 150
        assert 'Invoice INV-100' in provider.calls[0]['user_prompt']

    @pytest.mark.asyncio
    async def test_extract_keeps_vendor_fields(self, template):
        """Test template and unknown vendor keys flow through"""
        provider = FakeProvider([{**INVOICE_DATA, 'poNumber': 'PO-1', 'Kundennummer': 'K-5'}])

        result = await InvoiceExtractor().extract(provider, "text", template)

        assert result.data['poNumber'] == 'PO-1'
        assert result.data['Kundennummer'] == 'K-5'
        assert result.data['discount'] is None
        assert 'poNumber' in provider.calls[0]['instructions']

    @pytest.mark.asyncio
    async def test_missing_line_items_default_to_empty(self):
        """Test a null lineItems value becomes an empty list"""
        provider = FakeProvider([{'invoiceNumber': 'A', 'lineItems': None}])

        result = await InvoiceExtractor().extract(provider, "text")

        assert result.data['lineItems'] == []

    @pytest.mark.asyncio
    async def test_invalid_shape_raises(self):
        """Test a payload that does not fit the schema"""
        provider = FakeProvider([{'invoiceNumber': 'A', 'lineItems': 'not a list'}])

        with pytest.raises(ExtractionServiceError, match='expected shape'):
            await InvoiceExtractor().extract(provider, "text")

    @pytest.mark.asyncio
    async def test_provider_error_is_wrapped(self):
        """Test unexpected provider errors become ExtractionServiceError"""
        provider = FakeProvider([RuntimeError("boom")])

        with pytest.raises(ExtractionServiceError, match='boom'):
            await InvoiceExtractor().extract(provider, "text")
