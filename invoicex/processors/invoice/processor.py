"""
Document Processor

Runs one processing attempt for a document and owns its lifecycle:

pending/queued -> processing -> processed | validation_failed | failed

Steps: read file -> extract text -> detect vendor -> load template ->
AI extraction -> mapping and validation -> persist.

Vendor detection, template loading, template usage counters, batch refresh
and audit are best-effort: their failures are logged and never abort an
otherwise successful extraction. Any other failure marks the document
``failed`` and is re-raised so the queue's retry policy can act.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from invoicex.db.connection import Database
from invoicex.db.models import Document, LineItem
from invoicex.db.repository import DocumentRepository, VendorRepository
from invoicex.exceptions import (
    DocumentNotFoundError,
    InvalidDocumentStateError,
    MissingFileError,
    OwnershipError,
    StorageReadError,
)
from invoicex.models.invoice import (
    DocumentOutcome,
    DocumentStatus,
    ExtractionResult,
    LineItemData,
    ProcessingStep,
    TemplateConfig,
    ValidationOutcome,
    VendorMatch,
)
from invoicex.processors.base import best_effort
from invoicex.processors.invoice.extractor import InvoiceExtractor
from invoicex.processors.invoice.field_mapper import (
    apply_field_mappings,
    parse_document_date,
    separate_standard_and_custom_fields,
)
from invoicex.processors.invoice.rule_validator import apply_validation_rules
from invoicex.processors.invoice.template_resolver import TemplateResolver
from invoicex.processors.invoice.vendor_detector import VendorDetector
from invoicex.processors.llm.base_provider import ExtractionProvider, ProviderSettings
from invoicex.processors.llm.provider_factory import ProviderFactory
from invoicex.processors.pdf_to_text import PDFTextExtractor
from invoicex.services.audit import AuditEventType, AuditRecorder, AuditSeverity
from invoicex.services.statistics import StatisticsAggregator
from invoicex.storage.abstract_storage import AbstractStorage
from invoicex.utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = 'USD'

# Statuses a processing attempt may start from
PROCESSABLE_STATUSES = frozenset({
    DocumentStatus.PENDING.value,
    DocumentStatus.QUEUED.value,
    DocumentStatus.PROCESSING.value,
    DocumentStatus.FAILED.value,
    DocumentStatus.VALIDATION_FAILED.value,
})

ProviderFactoryFn = Callable[[ProviderSettings], ExtractionProvider]
ProgressCallback = Callable[[ProcessingStep], Any]


@dataclass
class ProcessingContext:
    """State carried through the steps of one attempt"""
    document_id: str
    owner_id: str
    file_location: str
    batch_id: Optional[str] = None
    vendor_override: Optional[str] = None
    job_id: Optional[str] = None
    attempt: int = 0

    provider: Optional[ExtractionProvider] = None
    pdf_bytes: Optional[bytes] = None
    text: Optional[str] = None
    vendor_match: VendorMatch = field(default_factory=VendorMatch.no_match)
    template: Optional[TemplateConfig] = None
    extraction: Optional[ExtractionResult] = None
    mapped: Dict[str, Any] = field(default_factory=dict)
    validation: ValidationOutcome = field(default_factory=ValidationOutcome)
    status: DocumentStatus = DocumentStatus.PROCESSING

    stage_times: Dict[str, float] = field(default_factory=dict)

    @property
    def vendor_id(self) -> Optional[str]:
        """Manual override wins over the detected vendor"""
        return self.vendor_override or self.vendor_match.vendor_id


def _as_float(value: Any) -> Optional[float]:
    """Coerce an extracted amount such as '$1,234.50' to a float"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r'[^\d.\-]', '', str(value))
    try:
        return float(cleaned)
    except ValueError:
        return None


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _as_currency(value: Any) -> str:
    """ISO 4217 style three-letter code, otherwise the default currency"""
    code = _as_str(value)
    if code and re.fullmatch(r'[A-Za-z]{3}', code):
        return code.upper()
    return DEFAULT_CURRENCY


class DocumentProcessor:
    """
    Processes a single document end to end

    The extraction provider is created for every call through
    ``provider_factory`` and closed afterwards.

    Usage:
        processor = DocumentProcessor(db, storage, ProviderSettings(api_key=key))
        outcome = await processor.process(document_id, owner_id)
        outcome.status  # processed / validation_failed
    """

    def __init__(
        self,
        db: Database,
        storage: AbstractStorage,
        provider_settings: ProviderSettings,
        *,
        provider_factory: ProviderFactoryFn = ProviderFactory.create,
        text_extractor: Optional[PDFTextExtractor] = None,
        vendor_detector: Optional[VendorDetector] = None,
        template_resolver: Optional[TemplateResolver] = None,
        extractor: Optional[InvoiceExtractor] = None,
        audit: Optional[AuditRecorder] = None,
        statistics: Optional[StatisticsAggregator] = None
    ):
        self.db = db
        self.storage = storage
        self.provider_settings = provider_settings
        self.provider_factory = provider_factory
        self.text_extractor = text_extractor or PDFTextExtractor()
        self.vendor_detector = vendor_detector or VendorDetector(VendorRepository(db))
        self.template_resolver = template_resolver or TemplateResolver(db)
        self.extractor = extractor or InvoiceExtractor()
        self.audit = audit or AuditRecorder(db)
        self.statistics = statistics or StatisticsAggregator(db, self.audit)

    def load_for_processing(self, document_id: str, owner_id: str) -> Document:
        """
        Load a document and check it can be processed

        Nothing is modified; every failure here is an input error.

        Raises:
            DocumentNotFoundError, OwnershipError, MissingFileError,
            InvalidDocumentStateError
        """
        with self.db.session() as session:
            document = session.get(Document, document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        if document.owner_id != owner_id:
            raise OwnershipError(document_id, owner_id)
        if not document.file_location:
            raise MissingFileError(document_id)
        if document.status not in PROCESSABLE_STATUSES:
            raise InvalidDocumentStateError(document_id, document.status)
        return document

    async def process(
        self,
        document_id: str,
        owner_id: str,
        vendor_override: Optional[str] = None,
        *,
        job_id: Optional[str] = None,
        attempt: int = 0,
        progress: Optional[ProgressCallback] = None
    ) -> DocumentOutcome:
        """
        Run one processing attempt

        Args:
            document_id: Document to process
            owner_id: Owner the document must belong to
            vendor_override: Vendor chosen by the user; skips detection
            job_id: Queue job running this attempt, if any
            attempt: Zero-based attempt number, recorded as the retry count
            progress: Called with each ProcessingStep (sync or async)

        Returns:
            DocumentOutcome with status processed or validation_failed

        Raises:
            InputError: Before any state change
            ProcessingError: After the document was marked failed
        """
        document = await asyncio.to_thread(self.load_for_processing, document_id, owner_id)
        ctx = ProcessingContext(
            document_id=document.id,
            owner_id=owner_id,
            file_location=document.file_location,
            batch_id=document.batch_id,
            vendor_override=vendor_override,
            job_id=job_id,
            attempt=attempt
        )

        await asyncio.to_thread(self._begin, ctx)
        await self.refresh_batch(ctx.batch_id)
        logger.info(f"Processing document {document_id} (attempt {attempt + 1})")
        start_time = time.time()

        try:
            ctx.provider = self.provider_factory(self.provider_settings)

            await self._run_step(ctx, ProcessingStep.PDF_READ, self._read_file, progress)
            await self._run_step(ctx, ProcessingStep.PDF_PARSE, self._parse_text, progress)
            if not ctx.vendor_override:
                await self._run_step(ctx, ProcessingStep.VENDOR_DETECT, self._detect_vendor, progress)
            await self._run_step(ctx, ProcessingStep.TEMPLATE_LOAD, self._load_template, progress)
            await self._run_step(ctx, ProcessingStep.AI_EXTRACT, self._extract, progress)
            await self._run_step(ctx, ProcessingStep.VALIDATION, self._validate, progress)
            await self._run_step(ctx, ProcessingStep.DB_UPDATE, self._persist, progress)

        except Exception as e:
            await self.record_failure(ctx.document_id, str(e) or e.__class__.__name__)
            raise

        finally:
            if ctx.provider is not None:
                (await best_effort("Provider close", ctx.provider.aclose)).unwrap_or(None)

        total_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Document {document_id} processed with status {ctx.status.value} in {total_ms}ms"
        )
        await self._after_success(ctx)

        extraction = ctx.extraction
        return DocumentOutcome(
            document_id=ctx.document_id,
            status=ctx.status,
            vendor_match=ctx.vendor_match,
            vendor_id=ctx.vendor_id,
            template_id=ctx.template.id if ctx.template else None,
            validation=ctx.validation,
            usage=extraction.usage,
            cost=extraction.cost,
            stage_times=ctx.stage_times
        )

    async def _run_step(
        self,
        ctx: ProcessingContext,
        step: ProcessingStep,
        step_func: Callable,
        progress: Optional[ProgressCallback]
    ) -> None:
        """Run a step with timing and progress reporting"""
        if progress is not None:
            (await best_effort("Progress report", progress, step)).unwrap_or(None)

        start = time.time()
        await step_func(ctx)
        ctx.stage_times[step.value] = round((time.time() - start) * 1000, 1)
        logger.debug(f"{step.value} completed in {ctx.stage_times[step.value]}ms")

    def _begin(self, ctx: ProcessingContext) -> None:
        """Enter processing and clear what a previous attempt left behind"""
        with self.db.transaction() as session:
            document = session.get(Document, ctx.document_id)
            DocumentRepository.delete_line_items(session, ctx.document_id)
            document.status = DocumentStatus.PROCESSING.value
            document.processing_started_at = utcnow()
            document.processing_completed_at = None
            document.job_id = ctx.job_id or document.job_id
            document.retry_count = max(document.retry_count or 0, ctx.attempt)
            document.ai_response = None
            document.last_error = None

        self.audit.record(
            AuditEventType.INVOICE_PROCESSING_STARTED,
            f"Processing started (attempt {ctx.attempt + 1})",
            owner_id=ctx.owner_id,
            batch_id=ctx.batch_id,
            target_type='invoice',
            target_id=ctx.document_id,
            details={'job_id': ctx.job_id, 'attempt': ctx.attempt}
        )

    async def _read_file(self, ctx: ProcessingContext) -> None:
        try:
            ctx.pdf_bytes = await asyncio.to_thread(self.storage.read, ctx.file_location)
        except Exception as e:
            raise StorageReadError(f"Failed to read PDF file: {e}") from e

    async def _parse_text(self, ctx: ProcessingContext) -> None:
        ctx.text = await asyncio.to_thread(self.text_extractor.extract, ctx.pdf_bytes)

    async def _detect_vendor(self, ctx: ProcessingContext) -> None:
        detection = await best_effort(
            "Vendor detection",
            self.vendor_detector.resolve,
            ctx.text,
            ctx.owner_id,
            ctx.provider
        )
        ctx.vendor_match = detection.unwrap_or(VendorMatch.no_match())

    async def _load_template(self, ctx: ProcessingContext) -> None:
        if not ctx.vendor_id:
            return
        loaded = await best_effort("Template load", self.template_resolver.resolve, ctx.vendor_id)
        ctx.template = loaded.unwrap_or(None)

    async def _extract(self, ctx: ProcessingContext) -> None:
        ctx.extraction = await self.extractor.extract(ctx.provider, ctx.text, ctx.template)

    async def _validate(self, ctx: ProcessingContext) -> None:
        template = ctx.template
        ctx.mapped = apply_field_mappings(
            ctx.extraction.data,
            template.field_mappings if template else None
        )
        ctx.validation = apply_validation_rules(
            ctx.mapped,
            template.validation_rules if template else None
        )
        if ctx.validation.valid:
            ctx.status = DocumentStatus.PROCESSED
        else:
            ctx.status = DocumentStatus.VALIDATION_FAILED
            logger.info(
                f"Document {ctx.document_id} failed {len(ctx.validation.errors)} validation rule(s)"
            )

    async def _persist(self, ctx: ProcessingContext) -> None:
        await asyncio.to_thread(self._write_results, ctx)

    def _write_results(self, ctx: ProcessingContext) -> None:
        standard, custom = separate_standard_and_custom_fields(ctx.mapped)
        line_items = self._line_items(standard.get('lineItems'))

        with self.db.transaction() as session:
            document = session.get(Document, ctx.document_id)
            DocumentRepository.delete_line_items(session, ctx.document_id)

            document.invoice_number = _as_str(standard.get('invoiceNumber'))
            document.invoice_date = parse_document_date(standard.get('date'))
            document.total_amount = _as_float(standard.get('totalAmount'))
            document.currency = _as_currency(standard.get('currency'))
            document.custom_data = custom or None
            document.ai_response = {**ctx.mapped, 'validation': ctx.validation.errors or None}
            document.raw_text = ctx.text

            document.vendor_id = ctx.vendor_id
            # Detection is skipped under a manual override
            document.detected_vendor_id = None if ctx.vendor_override else ctx.vendor_match.vendor_id
            document.template_id = ctx.template.id if ctx.template else None

            for index, item in enumerate(line_items):
                session.add(LineItem(
                    document_id=ctx.document_id,
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    amount=item.amount,
                    order_index=index
                ))

            document.status = ctx.status.value
            document.processing_completed_at = utcnow()
            document.last_error = None

    @staticmethod
    def _line_items(raw: Any) -> List[LineItemData]:
        items = []
        for entry in raw if isinstance(raw, list) else []:
            if isinstance(entry, LineItemData):
                items.append(entry)
                continue
            if not isinstance(entry, dict):
                logger.debug(f"Skipping malformed line item: {entry!r}")
                continue
            try:
                items.append(LineItemData.model_validate(entry))
            except ValidationError as e:
                logger.debug(f"Skipping malformed line item {entry!r}: {e}")
        return items

    async def _after_success(self, ctx: ProcessingContext) -> None:
        if ctx.template is not None:
            (await best_effort(
                "Template usage update", self.template_resolver.record_usage, ctx.template.id
            )).unwrap_or(None)

        if ctx.vendor_match.vendor_id:
            await self._audit(
                AuditEventType.VENDOR_DETECTED,
                f"Vendor {ctx.vendor_match.detected_name} detected by {ctx.vendor_match.reason.value}",
                owner_id=ctx.owner_id,
                batch_id=ctx.batch_id,
                target_type='invoice',
                target_id=ctx.document_id,
                new_value=ctx.vendor_match.model_dump(mode='json')
            )

        severity = AuditSeverity.INFO if ctx.validation.valid else AuditSeverity.WARNING
        await self._audit(
            AuditEventType.INVOICE_PROCESSING_COMPLETED,
            f"Processing completed with status {ctx.status.value}",
            owner_id=ctx.owner_id,
            batch_id=ctx.batch_id,
            target_type='invoice',
            target_id=ctx.document_id,
            new_value={'status': ctx.status.value},
            details={
                'vendor_id': ctx.vendor_id,
                'template_id': ctx.template.id if ctx.template else None,
                'validation_errors': ctx.validation.errors,
                'usage': ctx.extraction.usage.model_dump(),
                'cost': ctx.extraction.cost,
                'stage_times': ctx.stage_times,
            },
            severity=severity
        )
        await self.refresh_batch(ctx.batch_id)

    def mark_failed(self, document_id: str, error: str) -> Optional[Document]:
        """
        Persist the failed state of a document

        Returns:
            The updated document, or None if it no longer exists
        """
        now = utcnow()
        with self.db.transaction() as session:
            document = session.get(Document, document_id)
            if document is None:
                return None
            document.status = DocumentStatus.FAILED.value
            document.last_error = error
            document.ai_response = {'error': error, 'timestamp': now.isoformat()}
            document.processing_completed_at = now
            return document

    async def record_failure(self, document_id: str, error: str) -> None:
        """
        Mark a document failed, then refresh its batch and audit

        Used for failed attempts and for jobs whose retries are exhausted.
        Never raises, so the original error can propagate.
        """
        logger.error(f"Processing failed for document {document_id}: {error}")
        document = (await best_effort("Failure update", self.mark_failed, document_id, error)).unwrap_or(None)
        if document is None:
            return

        await self._audit(
            AuditEventType.INVOICE_PROCESSING_FAILED,
            f"Processing failed: {error}",
            owner_id=document.owner_id,
            batch_id=document.batch_id,
            target_type='invoice',
            target_id=document_id,
            new_value={'status': DocumentStatus.FAILED.value},
            details={'error': error, 'retry_count': document.retry_count},
            severity=AuditSeverity.ERROR
        )
        await self.refresh_batch(document.batch_id)

    async def refresh_batch(self, batch_id: Optional[str]) -> None:
        """Recompute the batch's counters and status, best-effort"""
        if not batch_id:
            return
        (await best_effort("Batch refresh", self.statistics.refresh, batch_id)).unwrap_or(None)

    async def _audit(self, *args, **kwargs) -> None:
        await asyncio.to_thread(self.audit.record, *args, **kwargs)
