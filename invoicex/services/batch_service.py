"""
Batch Service

Batch ("request") membership, submission, retry and deletion. Batch
counters and status are never written here directly; every change ends
with a refresh through the statistics aggregator.
"""

import asyncio
import logging
from typing import List, Optional

from sqlalchemy import update

from invoicex.db.connection import Database
from invoicex.db.models import Batch, Document
from invoicex.db.repository import BatchRepository, DocumentRepository
from invoicex.exceptions import (
    BatchNotFoundError,
    DocumentNotFoundError,
    InvalidBatchStateError,
    OwnershipError,
)
from invoicex.jobs.dispatcher import JobDispatcher
from invoicex.models.invoice import (
    BatchStatistics,
    BatchStatus,
    DocumentError,
    DocumentStatus,
    RetryOutcome,
    RETRYABLE_DOCUMENT_STATUSES,
    SubmitOutcome,
)
from invoicex.services.audit import AuditEventType, AuditRecorder, AuditSeverity
from invoicex.services.batch_status import (
    can_delete_batch,
    can_modify_files,
    can_retry_batch,
    can_submit_batch,
)
from invoicex.services.statistics import StatisticsAggregator, calculate_statistics
from invoicex.utils import utcnow

logger = logging.getLogger(__name__)


def generate_batch_name(now=None) -> str:
    """Automatic batch name, e.g. 'Batch 2024-01-15 09:30'"""
    now = now or utcnow()
    return f"Batch {now:%Y-%m-%d %H:%M}"


class BatchService:
    """
    Manages batches of documents

    Usage:
        service = BatchService(db, dispatcher)
        batch = service.create_batch(owner_id, "January invoices")
        service.add_documents(batch.id, owner_id, [doc.id])
        outcome = await service.submit_batch(batch.id, owner_id)
    """

    def __init__(
        self,
        db: Database,
        dispatcher: JobDispatcher,
        audit: Optional[AuditRecorder] = None,
        statistics: Optional[StatisticsAggregator] = None
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.audit = audit or AuditRecorder(db)
        self.statistics = statistics or StatisticsAggregator(db, self.audit)
        self.batches = BatchRepository(db)
        self.documents = DocumentRepository(db)

    def create_batch(
        self,
        owner_id: str,
        name: Optional[str] = None,
        default_vendor_id: Optional[str] = None
    ) -> Batch:
        """Create an empty draft batch"""
        batch = self.batches.create({
            'owner_id': owner_id,
            'name': name or generate_batch_name(),
            'status': BatchStatus.DRAFT.value,
            'default_vendor_id': default_vendor_id,
        })
        logger.info(f"Created batch {batch.id} ({batch.name})")
        self.audit.record(
            AuditEventType.REQUEST_CREATED,
            f"Request created: {batch.name}",
            owner_id=owner_id,
            batch_id=batch.id,
            target_type='request',
            target_id=batch.id,
            new_value={'name': batch.name, 'default_vendor_id': default_vendor_id}
        )
        return batch

    def get_batch(self, batch_id: str, owner_id: str) -> Batch:
        """
        Get an owner's batch

        Raises:
            BatchNotFoundError: If the batch does not exist or was deleted
            OwnershipError: If it belongs to someone else
        """
        batch = self.batches.get_active(batch_id)
        if batch is None:
            raise BatchNotFoundError(batch_id)
        if batch.owner_id != owner_id:
            raise OwnershipError(batch_id, owner_id)
        return batch

    def list_batches(self, owner_id: str) -> List[Batch]:
        return self.batches.list_for_owner(owner_id)

    def add_documents(self, batch_id: str, owner_id: str, document_ids: List[str]) -> int:
        """
        Add existing documents to a draft batch

        Returns:
            Number of documents added

        Raises:
            InvalidBatchStateError: If the batch is not a draft or a document
                already belongs to another batch
            DocumentNotFoundError: If a document is missing or not the owner's
        """
        batch = self.get_batch(batch_id, owner_id)
        if not can_modify_files(batch.status):
            raise InvalidBatchStateError("Can only add files to draft requests")

        documents = self.documents.get_many(document_ids, owner_id)
        found = {d.id for d in documents}
        missing = [i for i in document_ids if i not in found]
        if missing:
            raise DocumentNotFoundError(missing[0])

        elsewhere = [d.id for d in documents if d.batch_id and d.batch_id != batch_id]
        if elsewhere:
            raise InvalidBatchStateError(
                f"Documents already in another request: {', '.join(elsewhere)}"
            )

        with self.db.transaction() as session:
            session.execute(
                update(Document).where(Document.id.in_(list(found))).values(batch_id=batch_id)
            )
        self.statistics.refresh(batch_id)

        for document in documents:
            self.audit.record(
                AuditEventType.INVOICE_ADDED_TO_REQUEST,
                f"Invoice {document.file_name} added to request",
                owner_id=owner_id,
                batch_id=batch_id,
                target_type='invoice',
                target_id=document.id
            )
        return len(documents)

    def remove_documents(self, batch_id: str, owner_id: str, document_ids: List[str]) -> int:
        """
        Remove documents from a draft batch

        Documents are unlinked, never deleted.

        Returns:
            Number of documents removed
        """
        batch = self.get_batch(batch_id, owner_id)
        if not can_modify_files(batch.status):
            raise InvalidBatchStateError("Can only remove files from draft requests")

        documents = [d for d in self.documents.get_many(document_ids, owner_id) if d.batch_id == batch_id]
        found = {d.id for d in documents}
        missing = [i for i in document_ids if i not in found]
        if missing:
            raise DocumentNotFoundError(missing[0])

        removed = self.documents.unlink_from_batch(batch_id, list(found))
        self.statistics.refresh(batch_id)

        for document in documents:
            self.audit.record(
                AuditEventType.INVOICE_REMOVED_FROM_REQUEST,
                f"Invoice {document.file_name} removed from request",
                owner_id=owner_id,
                batch_id=batch_id,
                target_type='invoice',
                target_id=document.id
            )
        return removed

    async def submit_batch(self, batch_id: str, owner_id: str) -> SubmitOutcome:
        """
        Submit every pending document of a draft batch

        Documents are dispatched with the batch's default vendor. A document
        that cannot be dispatched is reported in ``errors`` and does not stop
        the others.

        Raises:
            InvalidBatchStateError: If the batch is not a draft with pending
                documents
        """
        batch = self.get_batch(batch_id, owner_id)
        pending = self.documents.list_by_batch(batch_id, [DocumentStatus.PENDING.value])
        if not can_submit_batch(batch.status, len(pending)):
            raise InvalidBatchStateError(
                "Request cannot be submitted (must be in draft status with pending invoices)"
            )

        await asyncio.to_thread(self._mark_submitted, batch_id)

        outcome = SubmitOutcome(batch_id=batch_id)
        for document in pending:
            try:
                result = await self.dispatcher.submit(document.id, owner_id, batch.default_vendor_id)
            except Exception as e:
                logger.error(f"Error submitting document {document.id}: {e}")
                outcome.errors.append(DocumentError(document_id=document.id, error=str(e)))
                continue
            outcome.submitted.append(result)

        outcome.status = (await asyncio.to_thread(self.statistics.refresh, batch_id)).status
        logger.info(
            f"Submitted batch {batch_id}: {len(outcome.submitted)} dispatched, {len(outcome.errors)} errors"
        )
        await asyncio.to_thread(
            self.audit.record,
            AuditEventType.REQUEST_SUBMITTED,
            f"Request submitted for processing: {batch.name}",
            owner_id=owner_id,
            batch_id=batch_id,
            target_type='request',
            target_id=batch_id,
            details={
                'invoice_count': len(pending),
                'success_count': len(outcome.submitted),
                'error_count': len(outcome.errors),
            }
        )
        return outcome

    async def retry_batch(self, batch_id: str, owner_id: str) -> RetryOutcome:
        """
        Retry every failed or validation_failed document of a batch

        Each document is dispatched as a retry with the batch's default
        vendor or its own vendor. Its previous results are kept until the
        dispatch succeeds, so a document that cannot be dispatched still
        carries the data behind its status.

        Raises:
            InvalidBatchStateError: If the batch has nothing to retry
        """
        batch = self.get_batch(batch_id, owner_id)
        failed = self.failed_documents(batch_id, owner_id)
        if not can_retry_batch(batch.status, len(failed)):
            raise InvalidBatchStateError("Request has no failed invoices to retry")

        outcome = RetryOutcome(batch_id=batch_id)
        for document in failed:
            try:
                result = await self.dispatcher.submit(
                    document.id,
                    owner_id,
                    batch.default_vendor_id or document.vendor_id,
                    retry=True
                )
            except Exception as e:
                logger.error(f"Error retrying document {document.id}: {e}")
                outcome.errors.append(DocumentError(document_id=document.id, error=str(e)))
                continue
            outcome.retried.append(result)
            await asyncio.to_thread(
                self.audit.record,
                AuditEventType.INVOICE_RETRIED,
                "Invoice retry submitted",
                owner_id=owner_id,
                batch_id=batch_id,
                target_type='invoice',
                target_id=document.id,
                severity=AuditSeverity.WARNING,
                metadata={'job_id': result.job_id}
            )

        outcome.status = (await asyncio.to_thread(self.statistics.refresh, batch_id)).status
        await asyncio.to_thread(
            self.audit.record,
            AuditEventType.BULK_RETRY,
            f"Retrying {len(failed)} failed invoice(s) in request",
            owner_id=owner_id,
            batch_id=batch_id,
            target_type='request',
            target_id=batch_id,
            severity=AuditSeverity.WARNING,
            details={
                'invoice_count': len(failed),
                'success_count': len(outcome.retried),
                'error_count': len(outcome.errors),
            }
        )
        return outcome

    def _mark_submitted(self, batch_id: str) -> None:
        with self.db.transaction() as session:
            session.get(Batch, batch_id).submitted_at = utcnow()

    def delete_batch(self, batch_id: str, owner_id: str) -> int:
        """
        Soft-delete a batch, unlinking its documents

        Returns:
            Number of documents unlinked

        Raises:
            InvalidBatchStateError: While the batch is processing
        """
        batch = self.get_batch(batch_id, owner_id)
        if not can_delete_batch(batch.status):
            raise InvalidBatchStateError("Cannot delete request while processing")

        unlinked = self.documents.unlink_from_batch(batch_id)
        with self.db.transaction() as session:
            session.get(Batch, batch_id).deleted_at = utcnow()

        logger.info(f"Deleted batch {batch_id}, {unlinked} documents unlinked")
        self.audit.record(
            AuditEventType.REQUEST_DELETED,
            f"Request deleted: {batch.name}",
            owner_id=owner_id,
            batch_id=batch_id,
            target_type='request',
            target_id=batch_id,
            severity=AuditSeverity.WARNING,
            details={'invoice_count': unlinked},
            previous_value={'name': batch.name, 'status': batch.status}
        )
        return unlinked

    def get_statistics(self, batch_id: str, owner_id: str) -> BatchStatistics:
        """Statistics computed from the batch's current documents"""
        self.get_batch(batch_id, owner_id)
        return calculate_statistics(self.documents.list_by_batch(batch_id))

    def failed_documents(self, batch_id: str, owner_id: str) -> List[Document]:
        """Documents of the batch that can be retried"""
        self.get_batch(batch_id, owner_id)
        return self.documents.list_by_batch(
            batch_id, [s.value for s in RETRYABLE_DOCUMENT_STATUSES]
        )
