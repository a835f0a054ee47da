"""
InvoiceX Jobs Module

Provides queued execution of document processing.

Components:
- JobQueue: Durable queue on the operations table
- Worker: Polls the queue and executes pending jobs
- RateLimiter: Limits how many jobs start per time window
- InvoiceJobHandler: Runs invoice jobs through the document processor
- JobDispatcher: Chooses sync or queued processing per document
"""

from .queue import JobQueue, JobStatus, INVOICE_EXTRACTION
from .rate_limiter import RateLimiter, RateLimitConfig
from .worker import Worker, WorkerConfig
from .handlers import InvoiceJobHandler
from .dispatcher import (
    JobDispatcher,
    DispatcherSettings,
    is_queue_unavailable,
    SYNC_FALLBACK_WARNING,
)

__all__ = [
    # Queue
    'JobQueue',
    'JobStatus',
    'INVOICE_EXTRACTION',

    # Worker
    'Worker',
    'WorkerConfig',
    'InvoiceJobHandler',

    # Rate limiting
    'RateLimiter',
    'RateLimitConfig',

    # Dispatch
    'JobDispatcher',
    'DispatcherSettings',
    'is_queue_unavailable',
    'SYNC_FALLBACK_WARNING',
]
