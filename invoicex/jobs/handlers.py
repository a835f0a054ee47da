import asyncio
import logging
from typing import Any, Optional

from invoicex.db.models import Document, Operation
from invoicex.exceptions import InputError
from invoicex.jobs.queue import JobQueue
from invoicex.models.invoice import DocumentStatus, ProcessingStep
from invoicex.processors.base import ProcessingResult
from invoicex.processors.invoice.processor import DocumentProcessor

logger = logging.getLogger(__name__)


class InvoiceJobHandler:
    """
    Runs INVOICE_EXTRACTION jobs through the document processor

    Job details carry ``owner_id`` and the optional ``vendor_id`` override.
    Input errors are permanent and reported as a failed result instead of
    being retried.
    """

    def __init__(self, processor: DocumentProcessor, queue: JobQueue):
        self.processor = processor
        self.queue = queue

    async def __call__(self, operation: Operation) -> Any:
        details = operation.details or {}
        attempt = max((operation.attempts or 1) - 1, 0)

        def report(step: ProcessingStep) -> None:
            self.queue.set_progress(operation.id, step)

        try:
            return await self.processor.process(
                operation.document_id,
                details.get('owner_id'),
                details.get('vendor_id'),
                job_id=operation.id,
                attempt=attempt,
                progress=report
            )
        except InputError as e:
            logger.warning(f"Job {operation.id} rejected: {e}")
            return ProcessingResult.fail(str(e))

    async def on_exhausted(self, operation: Operation, error: str) -> None:
        """Write the final failed state once the queue gives up on a job"""
        status = await asyncio.to_thread(self._document_status, operation.document_id)
        if status is None or status in (
            DocumentStatus.PROCESSED.value,
            DocumentStatus.VALIDATION_FAILED.value,
        ):
            return
        await self.processor.record_failure(
            operation.document_id,
            f"Processing failed after {operation.attempts} attempts: {error}"
        )

    def _document_status(self, document_id: str) -> Optional[str]:
        with self.processor.db.session() as session:
            document = session.get(Document, document_id)
            return document.status if document else None
