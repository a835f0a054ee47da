"""
Batch and document services

Import from the submodules directly:

- batch_status: status rules for batches
- statistics: counters aggregated from member documents
- audit: audit event recording
- batch_service: batch membership, submission and retry
- document_service: upload and status lookup
"""
