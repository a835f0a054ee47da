"""
Invoice Processing Models

Pydantic contracts shared by the dispatcher, the document processor and the
batch services: lifecycle enums, the extraction payload, template
configuration and the results handed back to callers.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, ConfigDict


class DocumentStatus(str, Enum):
    """Document lifecycle status"""
    PENDING = "pending"
    QUEUED = "queued"
    PROCESSING = "processing"
    PROCESSED = "processed"
    VALIDATION_FAILED = "validation_failed"
    FAILED = "failed"


TERMINAL_DOCUMENT_STATUSES = frozenset({
    DocumentStatus.PROCESSED,
    DocumentStatus.VALIDATION_FAILED,
    DocumentStatus.FAILED,
})

RETRYABLE_DOCUMENT_STATUSES = frozenset({
    DocumentStatus.FAILED,
    DocumentStatus.VALIDATION_FAILED,
})


class BatchStatus(str, Enum):
    """Batch ("request") lifecycle status"""
    DRAFT = "draft"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class WorkerMode(str, Enum):
    """How the dispatcher executes processing"""
    DISABLED = "disabled"   # always inline
    EMBEDDED = "embedded"   # queue, worker runs in this process
    SEPARATE = "separate"   # queue, worker runs in its own process


class DispatchMode(str, Enum):
    SYNC = "sync"
    QUEUED = "queued"


class MatchReason(str, Enum):
    """Which detection strategy attributed the vendor"""
    IDENTIFIER = "identifier"
    AI = "ai"
    FUZZY = "fuzzy"
    NONE = "none"


class ProcessingStep(str, Enum):
    """Processing steps with their progress percentage and message"""
    PDF_READ = "pdf_read"
    PDF_PARSE = "pdf_parse"
    VENDOR_DETECT = "vendor_detect"
    TEMPLATE_LOAD = "template_load"
    AI_EXTRACT = "ai_extract"
    VALIDATION = "validation"
    DB_UPDATE = "db_update"

    @property
    def progress(self) -> int:
        return _STEP_PROGRESS[self][0]

    @property
    def message(self) -> str:
        return _STEP_PROGRESS[self][1]


_STEP_PROGRESS = {
    ProcessingStep.PDF_READ: (10, "Reading PDF file..."),
    ProcessingStep.PDF_PARSE: (25, "Extracting text from PDF..."),
    ProcessingStep.VENDOR_DETECT: (40, "Detecting vendor..."),
    ProcessingStep.TEMPLATE_LOAD: (50, "Loading vendor template..."),
    ProcessingStep.AI_EXTRACT: (75, "Extracting data with AI..."),
    ProcessingStep.VALIDATION: (90, "Validating extracted data..."),
    ProcessingStep.DB_UPDATE: (100, "Saving to database..."),
}


# Keys of the extraction payload that map onto Document columns
CANONICAL_FIELDS = ('invoiceNumber', 'date', 'totalAmount', 'currency', 'lineItems')


class LineItemData(BaseModel):
    """Line item as returned by the extraction service"""
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    description: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = Field(None, alias='unitPrice')
    amount: Optional[float] = None

    @field_validator('description', mode='before')
    @classmethod
    def coerce_description(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return str(v).strip()


class ExtractedInvoice(BaseModel):
    """
    Base shape of the extraction payload

    Unknown keys are kept so vendor-specific fields flow through to
    mapping and custom-field storage.
    """
    model_config = ConfigDict(populate_by_name=True, extra='allow')

    invoice_number: Optional[str] = Field(None, alias='invoiceNumber')
    date: Optional[str] = None
    total_amount: Optional[float] = Field(None, alias='totalAmount')
    currency: Optional[str] = None
    line_items: List[LineItemData] = Field(default_factory=list, alias='lineItems')

    @field_validator('invoice_number', 'date', 'currency', mode='before')
    @classmethod
    def coerce_string(cls, v: Any) -> Optional[str]:
        if v is None or v == '':
            return None
        return str(v).strip()

    @field_validator('line_items', mode='before')
    @classmethod
    def default_line_items(cls, v: Any) -> Any:
        return v or []


class CustomFieldDefinition(BaseModel):
    """Extra field a template asks the extraction service for"""
    name: str = Field(..., min_length=1)
    type: Literal['string', 'number', 'boolean', 'date'] = 'string'
    required: bool = False
    description: str = ''


class ValidationRule(BaseModel):
    """Declarative rule evaluated after extraction"""
    field: str
    rule: str
    value: Any = None
    message: Optional[str] = None


class TemplateConfig(BaseModel):
    """Active extraction customization of a vendor"""
    id: str
    vendor_id: str
    name: str = ''
    custom_prompt: Optional[str] = None
    custom_fields: List[CustomFieldDefinition] = Field(default_factory=list)
    field_mappings: Dict[str, str] = Field(default_factory=dict)
    validation_rules: List[ValidationRule] = Field(default_factory=list)

    @field_validator('custom_fields', 'validation_rules', mode='before')
    @classmethod
    def default_list(cls, v: Any) -> Any:
        return v or []

    @field_validator('field_mappings', mode='before')
    @classmethod
    def default_mapping(cls, v: Any) -> Any:
        return v or {}


class VendorMatch(BaseModel):
    """Outcome of vendor detection"""
    vendor_id: Optional[str] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    detected_name: Optional[str] = None
    reason: MatchReason = MatchReason.NONE

    @classmethod
    def no_match(cls) -> 'VendorMatch':
        return cls(vendor_id=None, confidence=0.0, reason=MatchReason.NONE)


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ExtractionResult(BaseModel):
    """Structured JSON returned by an extraction provider"""
    data: Dict[str, Any]
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: float = 0.0


class ValidationOutcome(BaseModel):
    valid: bool = True
    errors: List[str] = Field(default_factory=list)


class DispatchResult(BaseModel):
    """What the dispatcher did with a document"""
    document_id: str
    mode: DispatchMode
    status: DocumentStatus
    job_id: Optional[str] = None
    warning: Optional[str] = None
    error: Optional[str] = None


class DocumentOutcome(BaseModel):
    """Result of one successful processing attempt"""
    document_id: str
    status: DocumentStatus
    vendor_match: VendorMatch = Field(default_factory=VendorMatch.no_match)
    vendor_id: Optional[str] = None
    template_id: Optional[str] = None
    validation: ValidationOutcome = Field(default_factory=ValidationOutcome)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost: float = 0.0
    stage_times: Dict[str, float] = Field(default_factory=dict)


class BatchStatistics(BaseModel):
    """Counters derived from a batch's member documents"""
    total: int = 0
    processed: int = 0
    failed: int = 0
    pending: int = 0
    queued: int = 0
    processing: int = 0
    success_rate: int = 0
    total_amount: Optional[float] = None
    currency: Optional[str] = None
    average_amount: Optional[float] = None
    average_processing_time_ms: Optional[float] = None


class DocumentError(BaseModel):
    document_id: str
    error: str


class SubmitOutcome(BaseModel):
    batch_id: str
    submitted: List[DispatchResult] = Field(default_factory=list)
    errors: List[DocumentError] = Field(default_factory=list)
    status: BatchStatus = BatchStatus.DRAFT


class RetryOutcome(BaseModel):
    batch_id: str
    retried: List[DispatchResult] = Field(default_factory=list)
    errors: List[DocumentError] = Field(default_factory=list)
    status: BatchStatus = BatchStatus.PROCESSING


class DocumentStatusView(BaseModel):
    """Processing status of a document as exposed to callers"""
    document_id: str
    status: DocumentStatus
    job_status: Optional[Dict[str, Any]] = None
    processing_started_at: Optional[datetime] = None
    processing_completed_at: Optional[datetime] = None
    retry_count: int = 0
    last_error: Optional[str] = None
    elapsed_seconds: Optional[int] = None
    estimated_seconds: int = 30
    updated_at: Optional[datetime] = None
