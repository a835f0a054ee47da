"""
InvoiceX - Invoice Processing Pipeline

Turns uploaded invoice PDFs into structured records: text extraction,
vendor detection, template-aware AI extraction, validation and persistence,
with batch lifecycle tracking and an optional durable job queue.

Basic usage:
    from invoicex import InvoiceX, InvoiceXConfig

    app = InvoiceX.from_config(InvoiceXConfig.load().apply_env())
    app.initialize()

    # Upload into an automatically created draft batch
    document = await app.documents.upload_document('user_1', 'invoice.pdf', data)

    # Process every pending document of the batch
    outcome = await app.batches.submit_batch(document.batch_id, 'user_1')
"""

from invoicex.core import InvoiceX
from invoicex.config.invoicex_config import InvoiceXConfig

__all__ = ['InvoiceX', 'InvoiceXConfig']

__version__ = '0.1.0'
