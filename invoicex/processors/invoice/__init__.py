"""
Invoice Processing Module

Components:
- VendorDetector: Attributes documents to the owner's vendors
- TemplateResolver: Loads a vendor's active extraction template
- InvoiceExtractor: Template-aware extraction contract
- field_mapper / rule_validator: Mapping and validation of extracted data
- DocumentProcessor: Processing attempt and document lifecycle
"""

from .vendor_detector import VendorDetector
from .template_resolver import TemplateResolver
from .extractor import InvoiceExtractor, build_extraction_schema
from .field_mapper import apply_field_mappings, separate_standard_and_custom_fields, parse_document_date
from .rule_validator import apply_validation_rules
from .processor import DocumentProcessor, ProcessingContext

__all__ = [
    # Processors
    'VendorDetector',
    'TemplateResolver',
    'InvoiceExtractor',
    'DocumentProcessor',

    # Utilities
    'build_extraction_schema',
    'apply_field_mappings',
    'separate_standard_and_custom_fields',
    'parse_document_date',
    'apply_validation_rules',

    # Types
    'ProcessingContext',
]
