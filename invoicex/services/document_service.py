"""
Document Service

Upload of PDF documents and status lookups for callers polling progress.
"""

import asyncio
import logging
import re
import time
from typing import Dict, List, Optional

from invoicex.db.connection import Database
from invoicex.db.models import Document
from invoicex.db.repository import DocumentRepository
from invoicex.exceptions import InvalidBatchStateError, InvalidFileError
from invoicex.jobs.queue import JobQueue
from invoicex.models.invoice import DocumentStatus, DocumentStatusView
from invoicex.processors.base import best_effort
from invoicex.services.audit import AuditEventType, AuditRecorder
from invoicex.services.batch_service import BatchService
from invoicex.services.batch_status import can_modify_files
from invoicex.storage.abstract_storage import AbstractStorage
from invoicex.utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
ESTIMATED_PROCESSING_SECONDS = 30
PDF_MAGIC = b'%PDF'


def sanitize_file_name(file_name: str) -> str:
    """Replace anything but letters, digits, dots and dashes with '_'"""
    return re.sub(r'[^a-zA-Z0-9.-]', '_', file_name)


class DocumentService:
    """
    Uploads documents and reports their processing status

    Usage:
        service = DocumentService(db, storage, batch_service, queue)
        document = await service.upload_document(owner_id, "invoice.pdf", data)
        views = await service.get_status([document.id], owner_id)
    """

    def __init__(
        self,
        db: Database,
        storage: AbstractStorage,
        batch_service: BatchService,
        queue: Optional[JobQueue] = None,
        audit: Optional[AuditRecorder] = None
    ):
        self.db = db
        self.storage = storage
        self.batch_service = batch_service
        self.queue = queue
        self.audit = audit or batch_service.audit
        self.documents = DocumentRepository(db)

    def validate_file(self, file_name: str, data: bytes) -> None:
        """
        Raises:
            InvalidFileError: If the file is empty, too large or not a PDF
        """
        if not data:
            raise InvalidFileError(f"File {file_name} is empty")
        if len(data) > MAX_FILE_SIZE:
            raise InvalidFileError(f"File {file_name} exceeds 10MB limit")
        if not data.startswith(PDF_MAGIC):
            raise InvalidFileError(f"File {file_name} is not a PDF")

    async def upload_document(
        self,
        owner_id: str,
        file_name: str,
        data: bytes,
        batch_id: Optional[str] = None
    ) -> Document:
        """
        Store a PDF and create its pending document

        Without ``batch_id`` a draft batch is created automatically.

        Raises:
            InvalidFileError: If the file is rejected
            BatchNotFoundError, OwnershipError: For an unusable batch
            InvalidBatchStateError: If the batch is not a draft
        """
        self.validate_file(file_name, data)

        if batch_id:
            batch = self.batch_service.get_batch(batch_id, owner_id)
            if not can_modify_files(batch.status):
                raise InvalidBatchStateError("Can only upload to draft requests")
        else:
            batch = self.batch_service.create_batch(owner_id)

        key = f"users/{owner_id}/invoices/{int(time.time() * 1000)}_{sanitize_file_name(file_name)}"
        location = await asyncio.to_thread(
            self.storage.upload,
            data,
            key,
            {'content_type': 'application/pdf', 'owner_id': owner_id, 'file_name': file_name}
        )

        document = await asyncio.to_thread(self.documents.create, {
            'owner_id': owner_id,
            'batch_id': batch.id,
            'file_name': file_name,
            'file_location': location,
            'file_size': len(data),
            'status': DocumentStatus.PENDING.value,
        })
        logger.info(f"Uploaded document {document.id} to {location}")

        await asyncio.to_thread(self.batch_service.statistics.refresh, batch.id)
        await asyncio.to_thread(
            self.audit.record,
            AuditEventType.INVOICE_UPLOADED,
            f"Invoice uploaded: {file_name}",
            owner_id=owner_id,
            batch_id=batch.id,
            target_type='invoice',
            target_id=document.id,
            details={'file_size': len(data)}
        )
        return document

    async def get_status(self, document_ids: List[str], owner_id: str) -> List[DocumentStatusView]:
        """
        Processing status of the owner's documents

        Documents that are missing or belong to someone else are left out.
        Queue job status is looked up best-effort.
        """
        documents = self.documents.get_many(document_ids, owner_id)
        by_id: Dict[str, Document] = {d.id: d for d in documents}
        now = utcnow()

        views = []
        for document_id in document_ids:
            document = by_id.get(document_id)
            if document is None:
                continue

            job_status = None
            if document.job_id and self.queue is not None:
                lookup = await best_effort("Job status lookup", self.queue.get_job_status, document.job_id)
                job_status = lookup.unwrap_or(None)

            started = ensure_utc(document.processing_started_at)
            completed = ensure_utc(document.processing_completed_at)
            elapsed = int(((completed or now) - started).total_seconds()) if started else None

            views.append(DocumentStatusView(
                document_id=document.id,
                status=DocumentStatus(document.status),
                job_status=job_status,
                processing_started_at=started,
                processing_completed_at=completed,
                retry_count=document.retry_count or 0,
                last_error=document.last_error,
                elapsed_seconds=elapsed,
                estimated_seconds=ESTIMATED_PROCESSING_SECONDS,
                updated_at=ensure_utc(document.updated_at)
            ))
        return views
