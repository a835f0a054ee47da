"""
Batch status rules

A batch's status is a pure function of its documents' statuses. Only the
count of each status matters, so the order documents are listed in never
changes the result.
"""

from collections import Counter
from typing import Iterable, Optional, Union

from invoicex.models.invoice import BatchStatus, DocumentStatus

StatusLike = Union[DocumentStatus, str, None]

TERMINAL_BATCH_STATUSES = frozenset({
    BatchStatus.COMPLETED,
    BatchStatus.PARTIAL,
    BatchStatus.FAILED,
})


def _normalize(status: StatusLike) -> DocumentStatus:
    if status is None or status == '':
        return DocumentStatus.PENDING
    return DocumentStatus(status)


def calculate_status(statuses: Iterable[StatusLike]) -> BatchStatus:
    """
    Derive a batch status from document statuses

    - no documents: draft
    - anything queued or processing: processing
    - only pending: draft
    - failures and no successes: failed
    - successes only: completed
    - successes and failures: partial
    - pending mixed with successes and no failures: draft

    Missing statuses count as pending.
    """
    counts = Counter(_normalize(s) for s in statuses)
    if not counts:
        return BatchStatus.DRAFT

    processed = counts[DocumentStatus.PROCESSED]
    failed = counts[DocumentStatus.FAILED] + counts[DocumentStatus.VALIDATION_FAILED]
    pending = counts[DocumentStatus.PENDING]
    in_flight = counts[DocumentStatus.QUEUED] + counts[DocumentStatus.PROCESSING]

    if in_flight:
        return BatchStatus.PROCESSING
    if pending and not processed and not failed:
        return BatchStatus.DRAFT
    if failed and not processed:
        return BatchStatus.FAILED
    if processed and not failed and not pending:
        return BatchStatus.COMPLETED
    if processed and failed:
        return BatchStatus.PARTIAL
    return BatchStatus.DRAFT


def is_terminal_status(status: Optional[str]) -> bool:
    return status in {s.value for s in TERMINAL_BATCH_STATUSES}


def can_submit_batch(status: Optional[str], pending_count: int) -> bool:
    """Drafts with at least one pending document can be submitted"""
    return status == BatchStatus.DRAFT.value and pending_count > 0


def can_retry_batch(status: Optional[str], failed_count: int) -> bool:
    """Failed or partial batches with failed documents can be retried"""
    return status in (BatchStatus.FAILED.value, BatchStatus.PARTIAL.value) and failed_count > 0


def can_delete_batch(status: Optional[str]) -> bool:
    return status != BatchStatus.PROCESSING.value


def can_modify_files(status: Optional[str]) -> bool:
    """Documents can only be added or removed while the batch is a draft"""
    return status == BatchStatus.DRAFT.value
