"""
Tests for declarative validation rules
"""

from invoicex.models.invoice import ValidationRule
from invoicex.processors.invoice.rule_validator import apply_validation_rules


class TestApplyValidationRules:
    """Tests for apply_validation_rules"""

    def test_no_rules(self):
        """Test data is valid without rules"""
        outcome = apply_validation_rules({'totalAmount': 1}, None)
        assert outcome.valid
        assert outcome.errors == []

    def test_required(self):
        """Test required fields"""
        outcome = apply_validation_rules(
            {'invoiceNumber': 'A', 'poNumber': ''},
            [{'field': 'poNumber', 'rule': 'required'}, {'field': 'invoiceNumber', 'rule': 'required'}]
        )
        assert not outcome.valid
        assert outcome.errors == ['poNumber is required']

    def test_min_and_max(self):
        """Test numeric bounds"""
        rules = [
            {'field': 'totalAmount', 'rule': 'min', 'value': 10},
            {'field': 'totalAmount', 'rule': 'max', 'value': 100},
        ]
        assert apply_validation_rules({'totalAmount': 50}, rules).valid
        assert apply_validation_rules({'totalAmount': 5}, rules).errors == ['totalAmount must be at least 10']
        assert apply_validation_rules({'totalAmount': 500}, rules).errors == ['totalAmount must be at most 100']

    def test_min_ignores_non_numbers(self):
        """Test bounds only apply to numbers"""
        rules = [{'field': 'totalAmount', 'rule': 'min', 'value': 10}]
        assert apply_validation_rules({'totalAmount': 'n/a'}, rules).valid
        assert apply_validation_rules({}, rules).valid

    def test_pattern(self):
        """Test regex patterns"""
        rules = [{'field': 'invoiceNumber', 'rule': 'pattern', 'value': r'^INV-\d+$'}]
        assert apply_validation_rules({'invoiceNumber': 'INV-42'}, rules).valid
        outcome = apply_validation_rules({'invoiceNumber': 'X42'}, rules)
        assert outcome.errors == [r'invoiceNumber must match pattern ^INV-\d+$']

    def test_length(self):
        """Test exact string length"""
        rules = [{'field': 'currency', 'rule': 'length', 'value': 3}]
        assert apply_validation_rules({'currency': 'USD'}, rules).valid
        assert not apply_validation_rules({'currency': 'US'}, rules).valid

    def test_custom_message(self):
        """Test the rule message replaces the default one"""
        rules = [ValidationRule(field='poNumber', rule='required', message='PO number missing')]
        assert apply_validation_rules({}, rules).errors == ['PO number missing']

    def test_unknown_rule_is_skipped(self):
        """Test unknown rule kinds are ignored"""
        rules = [{'field': 'totalAmount', 'rule': 'positive'}]
        assert apply_validation_rules({'totalAmount': -1}, rules).valid

    def test_invalid_regex_is_skipped(self):
        """Test a broken pattern does not fail validation"""
        rules = [
            {'field': 'invoiceNumber', 'rule': 'pattern', 'value': '(unclosed'},
            {'field': 'poNumber', 'rule': 'required'},
        ]
        outcome = apply_validation_rules({'invoiceNumber': 'INV-1'}, rules)
        assert outcome.errors == ['poNumber is required']

    def test_invalid_limit_is_skipped(self):
        """Test a non-numeric limit does not fail validation"""
        rules = [{'field': 'totalAmount', 'rule': 'min', 'value': 'ten'}]
        assert apply_validation_rules({'totalAmount': 5}, rules).valid
