"""
InvoiceX Processors

- base: processing results and best-effort sub-calls
- pdf_to_text: PDF text extraction
- llm: extraction providers and prompts
- invoice: vendor detection, templates, extraction and the document processor
"""

from . import base

__all__ = ['base']
