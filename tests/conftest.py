"""
Shared fixtures for InvoiceX tests
"""

from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest

from invoicex.db.connection import Database
from invoicex.db.models import Batch, Document, Vendor, VendorTemplate
from invoicex.exceptions import ExtractionServiceError
from invoicex.models.invoice import ExtractionResult, TokenUsage
from invoicex.processors.invoice.processor import DocumentProcessor
from invoicex.processors.llm.base_provider import ExtractionProvider, ProviderSettings
from invoicex.services.audit import AuditRecorder
from invoicex.services.statistics import StatisticsAggregator
from invoicex.storage.filesystem_storage import FileSystemStorage

PDF_BYTES = b'%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n%%EOF\n'

INVOICE_TEXT = """ACME SUPPLIES LTD
Tax ID: TAXID-9
Invoice INV-100
Date: 2024-01-15
Widgets 2 x 50.00 = 100.00
Total: USD 100.00
"""

INVOICE_DATA = {
    'invoiceNumber': 'INV-100',
    'date': '2024-01-15',
    'totalAmount': 100.0,
    'currency': 'usd',
    'lineItems': [
        {'description': 'Widgets', 'quantity': 2, 'unitPrice': 50.0, 'amount': 100.0},
    ],
}


class FakeProvider(ExtractionProvider):
    """Extraction provider returning canned payloads"""

    name = 'fake'

    def __init__(
        self,
        responses: Optional[List[Any]] = None,
        vendor_response: Optional[Dict[str, Any]] = None
    ):
        super().__init__(ProviderSettings(provider='fake', api_key='test-key'))
        self.responses = list(responses or [])
        self.vendor_response = vendor_response
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def extract(self, text, instructions, *, user_prompt=None):
        self.calls.append({'text': text, 'instructions': instructions, 'user_prompt': user_prompt})
        if 'vendor detection assistant' in instructions:
            if self.vendor_response is None:
                raise ExtractionServiceError("vendor detection unavailable")
            return ExtractionResult(data=self.vendor_response)

        if not self.responses:
            raise ExtractionServiceError("AI extraction failed: no response queued")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        usage = TokenUsage(prompt_tokens=100, completion_tokens=50, total_tokens=150)
        return ExtractionResult(data=response, usage=usage, cost=self.estimate_cost(usage))

    def estimate_cost(self, usage):
        return 0.0

    async def aclose(self):
        self.closed = True

    @property
    def extraction_calls(self) -> List[Dict[str, Any]]:
        return [c for c in self.calls if 'vendor detection assistant' not in c['instructions']]


class Factory:
    """Creates rows for tests"""

    def __init__(self, db: Database, storage: FileSystemStorage):
        self.db = db
        self.storage = storage

    def _add(self, instance):
        with self.db.transaction() as session:
            session.add(instance)
            session.flush()
            session.refresh(instance)
        return instance

    def vendor(self, owner_id='user_1', name='Acme Supplies Ltd', identifiers=None) -> Vendor:
        return self._add(Vendor(owner_id=owner_id, name=name, identifiers=identifiers))

    def template(self, vendor_id: str, **kwargs) -> VendorTemplate:
        kwargs.setdefault('name', 'Default')
        return self._add(VendorTemplate(vendor_id=vendor_id, **kwargs))

    def batch(self, owner_id='user_1', name='Test batch', status='draft', **kwargs) -> Batch:
        return self._add(Batch(owner_id=owner_id, name=name, status=status, **kwargs))

    def document(
        self,
        owner_id='user_1',
        batch_id=None,
        status='pending',
        file_name='invoice.pdf',
        stored=True,
        **kwargs
    ) -> Document:
        location = None
        if stored:
            location = self.storage.upload(PDF_BYTES, f"users/{owner_id}/invoices/{file_name}")
        return self._add(Document(
            owner_id=owner_id,
            batch_id=batch_id,
            file_name=file_name,
            file_location=location,
            status=status,
            **kwargs
        ))

    def get_document(self, document_id: str) -> Document:
        with self.db.session() as session:
            return session.get(Document, document_id)

    def get_batch(self, batch_id: str) -> Batch:
        with self.db.session() as session:
            return session.get(Batch, batch_id)


@pytest.fixture
def db(tmp_path):
    """Initialized SQLite database"""
    database = Database({'type': 'sqlite', 'path': str(tmp_path / 'invoicex.db')})
    database.initialize()
    yield database
    database.dispose()


@pytest.fixture
def storage(tmp_path):
    return FileSystemStorage({'path': str(tmp_path / 'storage')})


@pytest.fixture
def factory(db, storage):
    return Factory(db, storage)


@pytest.fixture
def audit(db):
    return AuditRecorder(db)


@pytest.fixture
def statistics(db, audit):
    return StatisticsAggregator(db, audit)


@pytest.fixture
def text_extractor():
    extractor = Mock()
    extractor.extract.return_value = INVOICE_TEXT
    return extractor


@pytest.fixture
def make_processor(db, storage, audit, statistics, text_extractor):
    """
    Build a DocumentProcessor whose provider factory hands out ``provider``
    """
    def _make(provider: ExtractionProvider, storage_backend=None) -> DocumentProcessor:
        return DocumentProcessor(
            db,
            storage_backend or storage,
            ProviderSettings(provider='fake', api_key='test-key'),
            provider_factory=lambda settings: provider,
            text_extractor=text_extractor,
            audit=audit,
            statistics=statistics
        )
    return _make
