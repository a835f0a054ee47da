"""
Tests for field mapping and lenient date parsing
"""

from datetime import datetime

from invoicex.processors.invoice.field_mapper import (
    apply_field_mappings,
    parse_document_date,
    separate_standard_and_custom_fields,
)


class TestApplyFieldMappings:
    """Tests for apply_field_mappings"""

    def test_mapping_is_additive(self):
        """Test original keys survive next to the mapped ones"""
        data = {'Rechnungsnummer': 'R-1', 'Betrag': 12.5, 'currency': 'EUR'}
        mapped = apply_field_mappings(data, {'Rechnungsnummer': 'invoiceNumber', 'Betrag': 'totalAmount'})

        assert mapped['invoiceNumber'] == 'R-1'
        assert mapped['totalAmount'] == 12.5
        for key, value in data.items():
            assert mapped[key] == value

    def test_absent_source_is_skipped(self):
        """Test mappings whose source is missing add nothing"""
        mapped = apply_field_mappings({'invoiceNumber': 'A'}, {'Rechnungsnummer': 'invoiceNumber'})
        assert mapped == {'invoiceNumber': 'A'}

    def test_mapping_overrides_canonical_value(self):
        """Test a mapped value replaces the canonical one"""
        mapped = apply_field_mappings(
            {'invoiceNumber': None, 'ref': 'X-9'},
            {'ref': 'invoiceNumber'}
        )
        assert mapped['invoiceNumber'] == 'X-9'

    def test_no_mappings(self):
        """Test None mappings copy the payload"""
        data = {'a': 1}
        mapped = apply_field_mappings(data, None)
        assert mapped == data
        assert mapped is not data


class TestSeparateFields:
    """Tests for separate_standard_and_custom_fields"""

    def test_partition(self):
        """Test every key lands in exactly one side"""
        data = {
            'invoiceNumber': 'INV-1',
            'date': '2024-01-01',
            'totalAmount': 5,
            'currency': 'USD',
            'lineItems': [],
            'poNumber': 'PO-7',
            'Rechnungsnummer': 'INV-1',
        }
        standard, custom = separate_standard_and_custom_fields(data)

        assert set(standard) == {'invoiceNumber', 'date', 'totalAmount', 'currency', 'lineItems'}
        assert custom == {'poNumber': 'PO-7', 'Rechnungsnummer': 'INV-1'}
        assert set(standard) | set(custom) == set(data)
        assert not set(standard) & set(custom)


class TestParseDocumentDate:
    """Tests for parse_document_date"""

    def test_iso(self):
        """Test ISO dates"""
        assert parse_document_date('2024-01-15') == datetime(2024, 1, 15)

    def test_iso_with_time(self):
        """Test ISO timestamps with a Z suffix"""
        parsed = parse_document_date('2024-01-15T10:30:00Z')
        assert parsed.year == 2024 and parsed.hour == 10

    def test_common_formats(self):
        """Test non-ISO formats"""
        assert parse_document_date('01/15/2024') == datetime(2024, 1, 15)
        assert parse_document_date('15.01.2024') == datetime(2024, 1, 15)
        assert parse_document_date('January 15, 2024') == datetime(2024, 1, 15)
        assert parse_document_date('15 Jan 2024') == datetime(2024, 1, 15)

    def test_unparseable_yields_none(self):
        """Test garbage dates become None instead of raising"""
        assert parse_document_date('sometime next week') is None
        assert parse_document_date('') is None
        assert parse_document_date(None) is None

    def test_datetime_passthrough(self):
        """Test datetime values are returned as-is"""
        value = datetime(2024, 2, 1)
        assert parse_document_date(value) is value
