"""
Job Dispatcher

Decides whether a document is processed inline or through the job queue.

- disabled: always processed synchronously
- embedded / separate: enqueued; a worker in this process (embedded) or in
  ``invoicex worker`` (separate) picks it up

When the queue backend cannot be reached the document is processed
synchronously instead and the result carries a warning. Any other enqueue
failure propagates.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from invoicex.db.connection import Database
from invoicex.db.models import Document
from invoicex.db.repository import DocumentRepository
from invoicex.exceptions import InputError, QueueUnavailableError
from invoicex.jobs.handlers import InvoiceJobHandler
from invoicex.jobs.queue import INVOICE_EXTRACTION, JobQueue
from invoicex.jobs.worker import Worker, WorkerConfig
from invoicex.models.invoice import DispatchMode, DispatchResult, DocumentStatus, WorkerMode
from invoicex.processors.invoice.processor import DocumentProcessor

logger = logging.getLogger(__name__)

QUEUE_UNAVAILABLE_MARKERS = ('ECONNREFUSED', 'Connection refused', 'could not connect')
SYNC_FALLBACK_WARNING = "processed synchronously due to queue unavailability"


def is_queue_unavailable(error: BaseException) -> bool:
    """True when an enqueue failure means the queue backend is unreachable"""
    if isinstance(error, QueueUnavailableError):
        return True
    message = str(error)
    return any(marker in message for marker in QUEUE_UNAVAILABLE_MARKERS)


@dataclass
class DispatcherSettings:
    """Explicit dispatcher settings, resolved from configuration by the caller"""
    mode: WorkerMode = WorkerMode.SEPARATE
    worker: WorkerConfig = field(default_factory=WorkerConfig)


class JobDispatcher:
    """
    Submits documents for processing

    Usage:
        dispatcher = JobDispatcher(db, queue, processor, DispatcherSettings(WorkerMode.DISABLED))
        result = await dispatcher.submit(document_id, owner_id)
        result.mode  # sync
    """

    def __init__(
        self,
        db: Database,
        queue: JobQueue,
        processor: DocumentProcessor,
        settings: Optional[DispatcherSettings] = None
    ):
        self.db = db
        self.queue = queue
        self.processor = processor
        self.settings = settings or DispatcherSettings()
        self._worker: Optional[Worker] = None
        self._worker_task: Optional[asyncio.Task] = None

    async def submit(
        self,
        document_id: str,
        owner_id: str,
        vendor_override: Optional[str] = None,
        *,
        retry: bool = False
    ) -> DispatchResult:
        """
        Submit a document for processing

        Args:
            document_id: Document to process
            owner_id: Owner the document must belong to
            vendor_override: Vendor chosen by the user
            retry: Count this submission as a retry. The previous attempt's
                results are only cleared once the document is queued or
                enters processing, so a failed dispatch leaves them intact

        Returns:
            DispatchResult; sync processing failures are reported with
            ``status=failed`` and the error message

        Raises:
            InputError: If the document cannot be submitted
            Exception: Enqueue failures other than an unreachable queue
        """
        document = await asyncio.to_thread(self.processor.load_for_processing, document_id, owner_id)
        retry_count = (document.retry_count or 0) + (1 if retry else 0)

        if self.settings.mode == WorkerMode.DISABLED:
            return await self._process_sync(document_id, owner_id, vendor_override, retry_count)

        try:
            job_id = await asyncio.to_thread(
                self.queue.enqueue,
                document_id,
                INVOICE_EXTRACTION,
                details={'owner_id': owner_id, 'vendor_id': vendor_override},
                idempotency_key=f"{INVOICE_EXTRACTION}:{document_id}:{retry_count}"
            )
        except Exception as e:
            if not is_queue_unavailable(e):
                raise
            logger.warning(f"Queue unavailable, processing document {document_id} synchronously: {e}")
            return await self._process_sync(
                document_id, owner_id, vendor_override, retry_count, warning=SYNC_FALLBACK_WARNING
            )

        await asyncio.to_thread(self._mark_queued, document_id, job_id, retry_count)
        await self.processor.refresh_batch(document.batch_id)
        logger.info(f"Document {document_id} queued as job {job_id}")
        return DispatchResult(
            document_id=document_id,
            mode=DispatchMode.QUEUED,
            status=DocumentStatus.QUEUED,
            job_id=job_id
        )

    async def _process_sync(
        self,
        document_id: str,
        owner_id: str,
        vendor_override: Optional[str],
        retry_count: int,
        warning: Optional[str] = None
    ) -> DispatchResult:
        try:
            outcome = await self.processor.process(
                document_id, owner_id, vendor_override, attempt=retry_count
            )
        except InputError:
            raise
        except Exception as e:
            return DispatchResult(
                document_id=document_id,
                mode=DispatchMode.SYNC,
                status=DocumentStatus.FAILED,
                warning=warning,
                error=str(e) or e.__class__.__name__
            )
        return DispatchResult(
            document_id=document_id,
            mode=DispatchMode.SYNC,
            status=outcome.status,
            warning=warning
        )

    def _mark_queued(self, document_id: str, job_id: str, retry_count: int) -> None:
        """Queue the document, dropping what its previous attempt left behind"""
        with self.db.transaction() as session:
            document = session.get(Document, document_id)
            DocumentRepository.delete_line_items(session, document_id)
            document.retry_count = retry_count
            document.status = DocumentStatus.QUEUED.value
            document.job_id = job_id
            document.last_error = None
            document.ai_response = None

    def create_worker(self) -> Worker:
        """Build a worker that runs invoice jobs through this dispatcher's processor"""
        worker = Worker(self.queue.db, self.settings.worker)
        worker.register_handler(INVOICE_EXTRACTION, InvoiceJobHandler(self.processor, self.queue))
        return worker

    async def start(self) -> None:
        """Start the in-process worker (embedded mode only)"""
        if self.settings.mode != WorkerMode.EMBEDDED or self._worker_task is not None:
            return
        self._worker = self.create_worker()
        self._worker_task = asyncio.create_task(self._worker.run(install_signal_handlers=False))
        logger.info("Embedded worker started")

    async def stop(self) -> None:
        """Stop the in-process worker and wait for it to finish"""
        if self._worker is None:
            return
        await self._worker.stop()
        await self._worker_task
        self._worker = None
        self._worker_task = None
        logger.info("Embedded worker stopped")
