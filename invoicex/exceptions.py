"""
InvoiceX exceptions

Errors are grouped by how the pipeline reacts to them:

- InputError: rejected before any document state is touched
- ProcessingError: fatal to a processing attempt, recorded as ``failed``
  and left to the queue's retry policy
- QueueUnavailableError: the job queue backend cannot be reached; the
  dispatcher falls back to synchronous processing
"""


class InvoiceXError(Exception):
    """Base class for all InvoiceX errors"""


class InputError(InvoiceXError):
    """Invalid request detected before any state mutation"""


class DocumentNotFoundError(InputError):
    """Document does not exist"""

    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class OwnershipError(InputError):
    """Document or batch belongs to a different owner"""

    def __init__(self, resource_id: str, owner_id: str):
        super().__init__(f"{resource_id} is not owned by {owner_id}")
        self.resource_id = resource_id
        self.owner_id = owner_id


class MissingFileError(InputError):
    """Document has no stored file to process"""

    def __init__(self, document_id: str):
        super().__init__(f"Document {document_id} has no file location")
        self.document_id = document_id


class InvalidFileError(InputError):
    """Uploaded file is not an acceptable PDF"""


class BatchNotFoundError(InputError):
    """Batch does not exist or was deleted"""

    def __init__(self, batch_id: str):
        super().__init__(f"Batch not found: {batch_id}")
        self.batch_id = batch_id


class InvalidBatchStateError(InputError):
    """Operation is not allowed in the batch's current status"""


class InvalidDocumentStateError(InputError):
    """Document cannot be processed from its current status"""

    def __init__(self, document_id: str, status: str):
        super().__init__(f"Document {document_id} cannot be processed from status '{status}'")
        self.document_id = document_id
        self.status = status


class ProcessingError(InvoiceXError):
    """Unrecoverable error during a processing attempt"""


class StorageReadError(ProcessingError):
    """Stored file could not be read"""


class TextExtractionError(ProcessingError):
    """PDF yielded no usable text"""


class ExtractionServiceError(ProcessingError):
    """Extraction service call failed or returned unusable data"""


class QueueUnavailableError(InvoiceXError):
    """Job queue backend is unreachable"""


class ProviderConfigError(InvoiceXError):
    """Extraction provider is unknown or misconfigured"""


class StorageNotFoundError(InvoiceXError):
    """No object stored at the given location"""

    def __init__(self, location: str):
        super().__init__(f"No file stored at {location}")
        self.location = location
