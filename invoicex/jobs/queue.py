"""
Job Queue

Durable queue of document processing jobs backed by the ``operation``
table. The queue may live in its own database; jobs only reference
documents by id.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from invoicex.db.connection import Database
from invoicex.db.models import Operation, generate_id
from invoicex.exceptions import QueueUnavailableError
from invoicex.models.invoice import ProcessingStep
from invoicex.utils import utcnow

logger = logging.getLogger(__name__)

INVOICE_EXTRACTION = 'INVOICE_EXTRACTION'

CONNECTION_FAILURE_MARKERS = (
    'unable to open database file',
    'could not connect',
    'Connection refused',
)


def is_connection_failure(error: OperationalError) -> bool:
    """True when the queue database could not be reached at all"""
    if error.connection_invalidated:
        return True
    message = str(error.orig or error)
    return any(marker in message for marker in CONNECTION_FAILURE_MARKERS)


class JobStatus(str, Enum):
    """Job execution status"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    DEAD_LETTER = "DEAD_LETTER"


ACTIVE_JOB_STATUSES = (JobStatus.PENDING.value, JobStatus.PROCESSING.value)


class JobQueue:
    """
    Queue for document processing jobs.

    Usage:
        queue = JobQueue(db)

        job_id = queue.enqueue(
            document_id='doc_123',
            operation_type=INVOICE_EXTRACTION,
            details={'owner_id': 'user_1', 'vendor_id': None}
        )
        queue.get_job_status(job_id)['status']  # 'pending'
    """

    def __init__(self, db: Database):
        self.db = db

    def enqueue(
        self,
        document_id: str,
        operation_type: str = INVOICE_EXTRACTION,
        details: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None
    ) -> str:
        """
        Enqueue a job for processing.

        Args:
            document_id: Document to process
            operation_type: Type of operation
            details: Job payload
            idempotency_key: An active job with the same key is returned
                instead of creating a new one

        Returns:
            Operation ID

        Raises:
            QueueUnavailableError: If the queue database cannot be reached
            OperationalError: Any other database failure, unchanged
        """
        try:
            with self.db.transaction() as session:
                if idempotency_key:
                    existing = session.execute(
                        select(Operation.id).where(
                            Operation.idempotency_key == idempotency_key,
                            Operation.status.in_(ACTIVE_JOB_STATUSES)
                        )
                    ).scalar_one_or_none()
                    if existing:
                        logger.debug(f"Duplicate job detected: {idempotency_key}")
                        return existing

                operation = Operation(
                    id=generate_id('ope'),
                    document_id=document_id,
                    operation_type=operation_type,
                    status=JobStatus.PENDING.value,
                    idempotency_key=idempotency_key,
                    details={
                        **(details or {}),
                        'enqueued_at': utcnow().isoformat()
                    },
                    created_at=utcnow()
                )
                session.add(operation)
                operation_id = operation.id
        except OperationalError as e:
            if not is_connection_failure(e):
                raise
            raise QueueUnavailableError(f"Job queue unavailable: {e.orig or e}") from e

        logger.info(f"Enqueued job {operation_id} for document {document_id}")
        return operation_id

    def get_job_status(self, operation_id: str) -> Optional[Dict[str, Any]]:
        """Get status of a job"""
        with self.db.session() as session:
            operation = session.get(Operation, operation_id)

            if not operation:
                return None

            return {
                'id': operation.id,
                'document_id': operation.document_id,
                'operation_type': operation.operation_type,
                'status': operation.status.lower(),
                'progress': operation.progress or 0,
                'step': (operation.details or {}).get('step'),
                'attempts': operation.attempts or 0,
                'error': operation.error,
                'created_at': operation.created_at.isoformat() if operation.created_at else None,
                'completed_at': operation.completed_at.isoformat() if operation.completed_at else None
            }

    def set_progress(self, operation_id: str, step: ProcessingStep) -> None:
        """Record the processing step a job has reached"""
        with self.db.transaction() as session:
            operation = session.get(Operation, operation_id)
            if operation is None:
                return
            operation.progress = step.progress
            operation.details = {
                **(operation.details or {}),
                'step': step.value,
                'message': step.message
            }

    def get_pending_count(self, operation_type: Optional[str] = None) -> int:
        """Get count of pending jobs"""
        with self.db.session() as session:
            query = select(func.count(Operation.id)).where(
                Operation.status == JobStatus.PENDING.value
            )
            if operation_type:
                query = query.where(Operation.operation_type == operation_type)
            return session.execute(query).scalar_one()

    def get_queue_stats(self) -> Dict[str, Any]:
        """Get queue statistics"""
        with self.db.session() as session:
            rows = session.execute(
                select(Operation.status, Operation.operation_type, func.count(Operation.id))
                .group_by(Operation.status, Operation.operation_type)
            ).all()

        stats = {
            'total': 0,
            'by_status': {},
            'by_type': {}
        }
        for status, op_type, count in rows:
            stats['total'] += count
            stats['by_status'][status] = stats['by_status'].get(status, 0) + count
            stats['by_type'][op_type] = stats['by_type'].get(op_type, 0) + count
        return stats
