"""
Batch Statistics Aggregator

Batch counters are a cache over the member documents. They are always
recomputed from the persisted documents, never incremented, so concurrent
document completions cannot make them drift and refreshing twice gives the
same answer.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select

from invoicex.db.connection import Database
from invoicex.db.models import Batch, Document
from invoicex.db.repository import DocumentRepository
from invoicex.exceptions import BatchNotFoundError
from invoicex.models.invoice import BatchStatistics, BatchStatus, DocumentStatus
from invoicex.services.audit import AuditEventType, AuditRecorder
from invoicex.services.batch_status import calculate_status, is_terminal_status
from invoicex.utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

CURRENCY_SYMBOLS = {
    'USD': '$',
    'EUR': '€',
    'GBP': '£',
    'JPY': '¥',
    'CAD': 'C$',
    'AUD': 'A$',
    'INR': '₹',
}


@dataclass
class BatchRefresh:
    """Outcome of recomputing a batch"""
    batch_id: str
    statistics: BatchStatistics
    status: BatchStatus
    previous_status: BatchStatus

    @property
    def changed(self) -> bool:
        return self.status != self.previous_status


def calculate_statistics(documents: Iterable[Document]) -> BatchStatistics:
    """
    Compute batch counters from documents

    Amounts, currency and processing time only consider processed
    documents.
    """
    documents = list(documents)
    counts = Counter(d.status or DocumentStatus.PENDING.value for d in documents)
    processed_docs = [d for d in documents if d.status == DocumentStatus.PROCESSED.value]

    total = len(documents)
    processed = len(processed_docs)
    failed = counts[DocumentStatus.FAILED.value] + counts[DocumentStatus.VALIDATION_FAILED.value]

    amounts = [d.total_amount for d in processed_docs if d.total_amount is not None]
    total_amount = round(sum(amounts), 2) if amounts else None
    average_amount = round(total_amount / len(amounts), 2) if amounts else None

    currencies = Counter(d.currency for d in processed_docs if d.currency)
    currency = currencies.most_common(1)[0][0] if currencies else None

    durations = [
        (ensure_utc(d.processing_completed_at) - ensure_utc(d.processing_started_at)).total_seconds() * 1000
        for d in processed_docs
        if d.processing_started_at and d.processing_completed_at
    ]
    average_time = round(sum(durations) / len(durations), 1) if durations else None

    return BatchStatistics(
        total=total,
        processed=processed,
        failed=failed,
        pending=counts[DocumentStatus.PENDING.value],
        queued=counts[DocumentStatus.QUEUED.value],
        processing=counts[DocumentStatus.PROCESSING.value],
        success_rate=round(processed / total * 100) if total else 0,
        total_amount=total_amount,
        currency=currency,
        average_amount=average_amount,
        average_processing_time_ms=average_time,
    )


def format_processing_time(ms: Optional[float]) -> str:
    """Format a duration in milliseconds, e.g. '850ms', '12.5s', '2m 5s'"""
    if ms is None:
        return '-'
    if ms < 1000:
        return f"{round(ms)}ms"
    if ms < 60_000:
        return f"{ms / 1000:.1f}s"
    minutes, seconds = divmod(round(ms / 1000), 60)
    return f"{minutes}m {seconds}s"


def format_amount(amount: Optional[float], currency: Optional[str] = 'USD') -> str:
    """Format an amount with its currency symbol, e.g. '$1,234.50'"""
    if amount is None:
        return '-'
    code = (currency or 'USD').upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol:
        return f"{symbol}{amount:,.2f}"
    return f"{amount:,.2f} {code}"


class StatisticsAggregator:
    """
    Recomputes batch counters and status from member documents

    Usage:
        aggregator = StatisticsAggregator(db, audit)
        refresh = aggregator.refresh(batch_id)
        if refresh.changed:
            ...
    """

    def __init__(self, db: Database, audit: Optional[AuditRecorder] = None):
        self.db = db
        self.audit = audit

    def refresh(self, batch_id: str) -> BatchRefresh:
        """
        Recompute and persist a batch's counters and status

        The batch row is locked for the duration so sibling documents
        finishing at the same time refresh one after another.

        Raises:
            BatchNotFoundError: If the batch does not exist or was deleted
        """
        with self.db.transaction() as session:
            batch = session.execute(
                select(Batch).where(Batch.id == batch_id).with_for_update()
            ).scalar_one_or_none()
            if batch is None or batch.deleted_at is not None:
                raise BatchNotFoundError(batch_id)

            documents = DocumentRepository.query_by_batch(session, batch_id)
            stats = calculate_statistics(documents)
            status = calculate_status(d.status for d in documents)
            previous = BatchStatus(batch.status)
            owner_id = batch.owner_id

            batch.total_invoices = stats.total
            batch.processed_count = stats.processed
            batch.failed_count = stats.failed
            batch.pending_count = stats.pending
            batch.queued_count = stats.queued
            batch.processing_count = stats.processing
            batch.total_amount = stats.total_amount
            batch.currency = stats.currency

            if status != previous:
                batch.status = status.value
                if is_terminal_status(status.value):
                    batch.completed_at = utcnow()
                else:
                    batch.completed_at = None

        refresh = BatchRefresh(batch_id, stats, status, previous)
        if refresh.changed:
            logger.info(f"Batch {batch_id} status {previous.value} -> {status.value}")
            if self.audit is not None:
                self.audit.record(
                    AuditEventType.REQUEST_UPDATED,
                    f"Batch status changed from {previous.value} to {status.value}",
                    owner_id=owner_id,
                    batch_id=batch_id,
                    target_type='request',
                    target_id=batch_id,
                    previous_value={'status': previous.value},
                    new_value={'status': status.value},
                    details=stats.model_dump()
                )
        return refresh
