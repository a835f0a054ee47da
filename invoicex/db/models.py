from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, DateTime, JSON, ForeignKey, Text, Boolean, Numeric, Index
)
from sqlalchemy.orm import relationship

from invoicex.db.connection import get_base
from invoicex.utils import utcnow

Base = get_base()


def generate_id(prefix: str) -> str:
    """Generate a prefixed unique id, e.g. ``doc_<hex>``"""
    return f"{prefix}_{uuid4().hex}"


class Vendor(Base):
    """
    Model for vendors

    ``identifiers`` holds strings such as tax or registration numbers that
    are matched verbatim against document text.
    """
    __tablename__ = 'vendor'

    id = Column(String(36), primary_key=True, default=lambda: generate_id('ven'))
    owner_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    identifiers = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    templates = relationship(
        'VendorTemplate', back_populates='vendor', order_by='VendorTemplate.created_at'
    )


class VendorTemplate(Base):
    """
    Model for vendor extraction templates

    Only the first active template of a vendor is applied at processing time.
    """
    __tablename__ = 'vendor_template'

    id = Column(String(36), primary_key=True, default=lambda: generate_id('tpl'))
    vendor_id = Column(String(36), ForeignKey('vendor.id'), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    custom_prompt = Column(Text, nullable=True)
    custom_fields = Column(JSON, nullable=True)  # [{name, type, required, description}]
    field_mappings = Column(JSON, nullable=True)  # {vendor key: canonical key}
    validation_rules = Column(JSON, nullable=True)  # [{field, rule, value, message}]
    invoice_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    vendor = relationship('Vendor', back_populates='templates')


class Batch(Base):
    """
    Model for upload batches ("requests")

    Counters and status are a cache derived from the member documents and
    are only ever written by the statistics aggregator.
    """
    __tablename__ = 'batch'

    id = Column(String(36), primary_key=True, default=lambda: generate_id('bat'))
    owner_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    status = Column(String(50), nullable=False, default='draft')
    default_vendor_id = Column(String(36), ForeignKey('vendor.id'), nullable=True)

    total_invoices = Column(Integer, nullable=False, default=0)
    processed_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    pending_count = Column(Integer, nullable=False, default=0)
    queued_count = Column(Integer, nullable=False, default=0)
    processing_count = Column(Integer, nullable=False, default=0)
    total_amount = Column(Numeric(14, 2, asdecimal=False), nullable=True)
    currency = Column(String(3), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    submitted_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)

    documents = relationship('Document', back_populates='batch')


class Document(Base):
    """
    Model for uploaded invoices and receipts
    """
    __tablename__ = 'document'
    __table_args__ = (
        Index('ix_document_batch_status', 'batch_id', 'status'),
    )

    id = Column(String(36), primary_key=True, default=lambda: generate_id('doc'))
    owner_id = Column(String(255), nullable=False, index=True)
    batch_id = Column(String(36), ForeignKey('batch.id'), nullable=True)
    file_name = Column(String(255), nullable=False)
    file_location = Column(String(1024), nullable=True)
    file_size = Column(Integer, nullable=True)

    # Canonical fields
    invoice_number = Column(String(255), nullable=True)
    invoice_date = Column(DateTime, nullable=True)
    total_amount = Column(Numeric(14, 2, asdecimal=False), nullable=True)
    currency = Column(String(3), nullable=True)

    custom_data = Column(JSON, nullable=True)
    raw_text = Column(Text, nullable=True)
    ai_response = Column(JSON, nullable=True)

    status = Column(String(50), nullable=False, default='pending')
    job_id = Column(String(64), nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    processing_started_at = Column(DateTime, nullable=True)
    processing_completed_at = Column(DateTime, nullable=True)

    vendor_id = Column(String(36), ForeignKey('vendor.id'), nullable=True)
    detected_vendor_id = Column(String(36), ForeignKey('vendor.id'), nullable=True)
    template_id = Column(String(36), ForeignKey('vendor_template.id'), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    batch = relationship('Batch', back_populates='documents')
    line_items = relationship(
        'LineItem',
        back_populates='document',
        order_by='LineItem.order_index',
        cascade='all, delete-orphan'
    )


class LineItem(Base):
    """
    Model for document line items
    """
    __tablename__ = 'line_item'

    id = Column(String(36), primary_key=True, default=lambda: generate_id('lit'))
    document_id = Column(String(36), ForeignKey('document.id'), nullable=False, index=True)
    description = Column(Text, nullable=True)
    quantity = Column(Numeric(14, 4, asdecimal=False), nullable=True)
    unit_price = Column(Numeric(14, 4, asdecimal=False), nullable=True)
    amount = Column(Numeric(14, 2, asdecimal=False), nullable=True)
    order_index = Column(Integer, nullable=False, default=0)

    document = relationship('Document', back_populates='line_items')


class Operation(Base):
    """
    Model for queued jobs

    ``document_id`` is deliberately not a foreign key so the queue can live
    in its own database.
    """
    __tablename__ = 'operation'
    __table_args__ = (
        Index('ix_operation_status_created', 'status', 'created_at'),
    )

    id = Column(String(36), primary_key=True, default=lambda: generate_id('ope'))
    document_id = Column(String(36), nullable=False, index=True)
    operation_type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default='PENDING')
    idempotency_key = Column(String(255), nullable=True, index=True)
    details = Column(JSON, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    retry_after = Column(DateTime, nullable=True)
    progress = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)


class AuditEvent(Base):
    """
    Model for append-only audit events
    """
    __tablename__ = 'audit_event'

    id = Column(String(36), primary_key=True, default=lambda: generate_id('aud'))
    batch_id = Column(String(36), nullable=True, index=True)
    owner_id = Column(String(255), nullable=False, index=True)
    event_type = Column(String(64), nullable=False)
    event_category = Column(String(64), nullable=False)
    severity = Column(String(16), nullable=False, default='info')
    summary = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    target_type = Column(String(32), nullable=True)
    target_id = Column(String(36), nullable=True)
    previous_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    event_metadata = Column('metadata', JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
