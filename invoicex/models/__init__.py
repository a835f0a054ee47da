from .invoice import (
    DocumentStatus,
    BatchStatus,
    WorkerMode,
    DispatchMode,
    MatchReason,
    ProcessingStep,
    CANONICAL_FIELDS,
    TERMINAL_DOCUMENT_STATUSES,
    RETRYABLE_DOCUMENT_STATUSES,
    LineItemData,
    ExtractedInvoice,
    CustomFieldDefinition,
    ValidationRule,
    TemplateConfig,
    VendorMatch,
    TokenUsage,
    ExtractionResult,
    ValidationOutcome,
    DispatchResult,
    DocumentOutcome,
    BatchStatistics,
    DocumentError,
    SubmitOutcome,
    RetryOutcome,
    DocumentStatusView,
)

__all__ = [
    'DocumentStatus', 'BatchStatus', 'WorkerMode', 'DispatchMode', 'MatchReason',
    'ProcessingStep', 'CANONICAL_FIELDS', 'TERMINAL_DOCUMENT_STATUSES',
    'RETRYABLE_DOCUMENT_STATUSES', 'LineItemData', 'ExtractedInvoice',
    'CustomFieldDefinition', 'ValidationRule', 'TemplateConfig', 'VendorMatch',
    'TokenUsage', 'ExtractionResult', 'ValidationOutcome', 'DispatchResult',
    'DocumentOutcome', 'BatchStatistics', 'DocumentError', 'SubmitOutcome',
    'RetryOutcome', 'DocumentStatusView',
]
