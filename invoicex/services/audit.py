"""
Audit Recorder

Append-only event log for batch and document activity. Recording is
fire-and-forget: a failed write is logged and reported in the returned
result, never raised.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

from invoicex.db.connection import Database
from invoicex.db.models import AuditEvent
from invoicex.processors.base import ProcessingResult

logger = logging.getLogger(__name__)


class AuditCategory(str, Enum):
    REQUEST_LIFECYCLE = "request_lifecycle"
    INVOICE_OPERATION = "invoice_operation"
    VENDOR_OPERATION = "vendor_operation"
    USER_ACTION = "user_action"


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEventType(str, Enum):
    """Audit event types with their category"""
    REQUEST_CREATED = "request_created"
    REQUEST_UPDATED = "request_updated"
    REQUEST_SUBMITTED = "request_submitted"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_DELETED = "request_deleted"
    INVOICE_UPLOADED = "invoice_uploaded"
    INVOICE_ADDED_TO_REQUEST = "invoice_added_to_request"
    INVOICE_REMOVED_FROM_REQUEST = "invoice_removed_from_request"
    INVOICE_PROCESSING_STARTED = "invoice_processing_started"
    INVOICE_PROCESSING_COMPLETED = "invoice_processing_completed"
    INVOICE_PROCESSING_FAILED = "invoice_processing_failed"
    INVOICE_DELETED = "invoice_deleted"
    INVOICE_RETRIED = "invoice_retried"
    VENDOR_ASSIGNED = "vendor_assigned"
    VENDOR_UNASSIGNED = "vendor_unassigned"
    VENDOR_DETECTED = "vendor_detected"
    BULK_DELETE = "bulk_delete"
    BULK_EXPORT = "bulk_export"
    BULK_RETRY = "bulk_retry"
    BULK_VENDOR_ASSIGNMENT = "bulk_vendor_assignment"

    @property
    def category(self) -> AuditCategory:
        if self.value.startswith('request_'):
            return AuditCategory.REQUEST_LIFECYCLE
        if self.value.startswith('invoice_'):
            return AuditCategory.INVOICE_OPERATION
        if self.value.startswith('vendor_'):
            return AuditCategory.VENDOR_OPERATION
        return AuditCategory.USER_ACTION


class AuditRecorder:
    """
    Writes audit events

    Usage:
        audit = AuditRecorder(db)
        audit.record(
            AuditEventType.BULK_RETRY,
            "Retried 3 invoices",
            owner_id=user_id,
            batch_id=batch.id,
        )
    """

    def __init__(self, db: Database):
        self.db = db

    def record(
        self,
        event_type: AuditEventType,
        summary: str,
        *,
        owner_id: str,
        batch_id: Optional[str] = None,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        previous_value: Any = None,
        new_value: Any = None,
        severity: AuditSeverity = AuditSeverity.INFO,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ProcessingResult:
        """
        Record an audit event

        Returns:
            ProcessingResult with the event id, or the error if the write failed
        """
        try:
            with self.db.transaction() as session:
                event = AuditEvent(
                    batch_id=batch_id,
                    owner_id=owner_id,
                    event_type=event_type.value,
                    event_category=event_type.category.value,
                    severity=severity.value,
                    summary=summary,
                    details=details,
                    target_type=target_type,
                    target_id=target_id,
                    previous_value=previous_value,
                    new_value=new_value,
                    event_metadata=metadata
                )
                session.add(event)
                session.flush()
                event_id = event.id
        except Exception as e:
            logger.error(f"Failed to record audit event {event_type.value}: {e}")
            return ProcessingResult.fail(str(e))
        return ProcessingResult.ok(event_id)
