"""
Tests for vendor detection
"""

import pytest

from invoicex.db.repository import VendorRepository
from invoicex.models.invoice import MatchReason
from invoicex.processors.invoice.vendor_detector import VendorDetector

from conftest import FakeProvider


@pytest.fixture
def detector(db):
    return VendorDetector(VendorRepository(db))


class TestVendorCandidates:
    """Tests for candidate selection"""

    def test_vendor_without_identifiers_or_templates_is_ignored(self, factory, db):
        """Test only vendors with identifiers or templates are candidates"""
        factory.vendor(name='Bare Vendor')
        with_ids = factory.vendor(name='Ids Vendor', identifiers=['VAT-1'])
        with_template = factory.vendor(name='Template Vendor')
        factory.template(with_template.id)
        factory.vendor(owner_id='user_2', name='Other Owner', identifiers=['VAT-2'])

        candidates = VendorRepository(db).list_candidates('user_1')

        assert {v.id for v in candidates} == {with_ids.id, with_template.id}


class TestVendorDetector:
    """Tests for the detection cascade"""

    @pytest.mark.asyncio
    async def test_no_candidates(self, detector):
        """Test that no vendors means no match"""
        provider = FakeProvider(vendor_response={'vendorId': 'ven_x', 'confidence': 1.0})
        match = await detector.resolve("Some invoice", 'user_1', provider)

        assert match.vendor_id is None
        assert match.confidence == 0.0
        assert match.reason == MatchReason.NONE
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_identifier_match_skips_ai(self, factory, detector):
        """Test an identifier match returns before AI detection"""
        vendor = factory.vendor(identifiers=['TAXID-9'])
        other = factory.vendor(name='Other Co', identifiers=['OTHER-1'])
        provider = FakeProvider(vendor_response={'vendorId': other.id, 'confidence': 0.99})

        match = await detector.resolve("Invoice\nTax: taxid-9\nTotal 10", 'user_1', provider)

        assert match.vendor_id == vendor.id
        assert match.reason == MatchReason.IDENTIFIER
        assert match.confidence == 0.95
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_identifiers_stored_as_json_string(self, factory, detector):
        """Test identifiers serialized as a JSON string are understood"""
        vendor = factory.vendor(identifiers='["DE123456789"]')
        match = await detector.resolve("USt-IdNr DE123456789", 'user_1')
        assert match.vendor_id == vendor.id

    @pytest.mark.asyncio
    async def test_ai_match_accepted(self, factory, detector):
        """Test a confident AI answer is accepted"""
        vendor = factory.vendor(name='Globex', identifiers=['GLX-1'])
        provider = FakeProvider(vendor_response={'vendorId': vendor.id, 'confidence': 0.85})

        match = await detector.resolve("Invoice from a supplier", 'user_1', provider)

        assert match.vendor_id == vendor.id
        assert match.reason == MatchReason.AI
        assert match.confidence == 0.85
        assert 'Known vendors' in provider.calls[0]['user_prompt']
        assert vendor.id in provider.calls[0]['user_prompt']

    @pytest.mark.asyncio
    async def test_ai_low_confidence_falls_through(self, factory, detector):
        """Test AI answers at or below the threshold are rejected"""
        vendor = factory.vendor(name='Globex', identifiers=['GLX-1'])
        provider = FakeProvider(vendor_response={'vendorId': vendor.id, 'confidence': 0.7})

        match = await detector.resolve("Invoice from a supplier", 'user_1', provider)

        assert match.vendor_id is None
        assert match.reason == MatchReason.NONE

    @pytest.mark.asyncio
    async def test_ai_unknown_vendor_rejected(self, factory, detector):
        """Test AI answers outside the candidate list are rejected"""
        factory.vendor(name='Globex', identifiers=['GLX-1'])
        provider = FakeProvider(vendor_response={'vendorId': 'ven_made_up', 'confidence': 0.99})

        match = await detector.resolve("Invoice", 'user_1', provider)

        assert match.vendor_id is None

    @pytest.mark.asyncio
    async def test_ai_failure_falls_back_to_fuzzy(self, factory, detector):
        """Test an AI error is non-fatal"""
        vendor = factory.vendor(name='Globex', identifiers=['GLX-1'])
        provider = FakeProvider(vendor_response=None)

        match = await detector.resolve("GLOBEX\nInvoice 7", 'user_1', provider)

        assert match.vendor_id == vendor.id
        assert match.reason == MatchReason.FUZZY
        assert match.confidence == 0.8

    @pytest.mark.asyncio
    async def test_partial_name_match(self, factory, detector):
        """Test multi-word names match on most significant words"""
        vendor = factory.vendor(name='Northwind Trading Company', identifiers=['NW-1'])

        match = await detector.resolve("NORTHWIND TRADING\nInvoice", 'user_1')

        assert match.vendor_id == vendor.id
        assert match.reason == MatchReason.FUZZY
        assert match.confidence == pytest.approx(2 / 3 * 0.7)

    @pytest.mark.asyncio
    async def test_partial_match_below_threshold(self, factory, detector):
        """Test half the significant words is not enough"""
        factory.vendor(name='Northwind Trading', identifiers=['NW-1'])

        match = await detector.resolve("NORTHWIND\nInvoice", 'user_1')

        assert match.vendor_id is None

    @pytest.mark.asyncio
    async def test_fuzzy_only_reads_header(self, factory, detector):
        """Test names beyond the document header are ignored"""
        factory.vendor(name='Globex', identifiers=['GLX-1'])
        text = ("x" * 1200) + " Globex"

        match = await detector.resolve(text, 'user_1')

        assert match.vendor_id is None
