"""
InvoiceX facade

Wires database, queue, storage, extraction providers, the document
processor, the dispatcher and the services from configuration. This is the
only place besides the CLI that reads configuration; everything below it
receives explicit settings.
"""

import logging
from typing import Optional

from invoicex.config.invoicex_config import InvoiceXConfig
from invoicex.db.connection import Database
from invoicex.jobs.dispatcher import DispatcherSettings, JobDispatcher
from invoicex.jobs.queue import JobQueue
from invoicex.jobs.rate_limiter import RateLimitConfig
from invoicex.jobs.worker import Worker, WorkerConfig
from invoicex.models.invoice import WorkerMode
from invoicex.processors.invoice.processor import DocumentProcessor, ProviderFactoryFn
from invoicex.processors.llm.base_provider import ProviderSettings
from invoicex.processors.llm.provider_factory import ProviderFactory
from invoicex.services.audit import AuditRecorder
from invoicex.services.batch_service import BatchService
from invoicex.services.document_service import DocumentService
from invoicex.services.statistics import StatisticsAggregator
from invoicex.storage.abstract_storage import AbstractStorage
from invoicex.storage.storage_factory import StorageFactory

logger = logging.getLogger(__name__)


def worker_mode_from_config(config: InvoiceXConfig) -> WorkerMode:
    """Resolve ``worker.mode``; unknown values use the queue like 'separate'"""
    raw = str(config.get('worker.mode', WorkerMode.SEPARATE.value)).lower()
    try:
        return WorkerMode(raw)
    except ValueError:
        logger.warning(f"Unknown worker mode '{raw}', using '{WorkerMode.SEPARATE.value}'")
        return WorkerMode.SEPARATE


def worker_config_from_config(config: InvoiceXConfig) -> WorkerConfig:
    return WorkerConfig(
        poll_interval=float(config.get('worker.poll_interval', 1.0)),
        batch_size=int(config.get('worker.batch_size', 10)),
        max_concurrent=int(config.get('worker.concurrency', 5)),
        rate_limit=RateLimitConfig(
            max_jobs=int(config.get('worker.max_jobs', 10)),
            duration_ms=int(config.get('worker.duration_ms', 1000))
        ),
        max_attempts=int(config.get('worker.max_attempts', 3)),
        retry_delay_base=float(config.get('worker.backoff_delay', 5.0)),
        retry_delay_max=float(config.get('worker.backoff_max', 300.0)),
        job_timeout=float(config.get('worker.job_timeout', 120)),
    )


def provider_settings_from_config(config: InvoiceXConfig) -> ProviderSettings:
    llm = config.section('llm')
    return ProviderSettings(
        provider=llm.get('provider') or 'openai',
        api_key=llm.get('api_key') or None,
        model=llm.get('model') or None,
        base_url=llm.get('base_url') or None,
        temperature=llm.get('temperature', 0.1),
        max_tokens=llm.get('max_tokens'),
    )


class InvoiceX:
    """
    Main entry point wiring the invoice processing pipeline

    Usage:
        app = InvoiceX.from_config(InvoiceXConfig.load().apply_env())
        app.initialize()

        document = await app.documents.upload_document(owner_id, "inv.pdf", data)
        outcome = await app.batches.submit_batch(document.batch_id, owner_id)
    """

    def __init__(
        self,
        db: Database,
        queue_db: Database,
        storage: AbstractStorage,
        processor: DocumentProcessor,
        dispatcher: JobDispatcher,
        batches: BatchService,
        documents: DocumentService
    ):
        self.db = db
        self.queue_db = queue_db
        self.storage = storage
        self.processor = processor
        self.dispatcher = dispatcher
        self.batches = batches
        self.documents = documents

    @classmethod
    def from_config(
        cls,
        config: Optional[InvoiceXConfig] = None,
        *,
        provider_factory: ProviderFactoryFn = ProviderFactory.create
    ) -> 'InvoiceX':
        """
        Build the pipeline from configuration

        Args:
            config: Loaded configuration; defaults plus environment when omitted
            provider_factory: Creates an extraction provider per processing call
        """
        config = config or InvoiceXConfig.load().apply_env()

        db = Database(config.section('database'))
        queue_section = config.get('queue.database') or {}
        queue_db = Database(queue_section) if queue_section else db
        storage = StorageFactory.create_storage(config.section('storage'))

        audit = AuditRecorder(db)
        statistics = StatisticsAggregator(db, audit)
        processor = DocumentProcessor(
            db,
            storage,
            provider_settings_from_config(config),
            provider_factory=provider_factory,
            audit=audit,
            statistics=statistics
        )
        queue = JobQueue(queue_db)
        dispatcher = JobDispatcher(
            db,
            queue,
            processor,
            DispatcherSettings(
                mode=worker_mode_from_config(config),
                worker=worker_config_from_config(config)
            )
        )
        batches = BatchService(db, dispatcher, audit, statistics)
        documents = DocumentService(db, storage, batches, queue, audit)
        return cls(db, queue_db, storage, processor, dispatcher, batches, documents)

    @property
    def mode(self) -> WorkerMode:
        return self.dispatcher.settings.mode

    def initialize(self) -> None:
        """Create database tables"""
        self.db.initialize()
        if self.queue_db is not self.db:
            self.queue_db.initialize()
        logger.info("InvoiceX database initialized")

    def create_worker(self) -> Worker:
        return self.dispatcher.create_worker()

    async def start(self) -> None:
        """Start the in-process worker when running in embedded mode"""
        await self.dispatcher.start()

    async def stop(self) -> None:
        await self.dispatcher.stop()

    def close(self) -> None:
        """Release database connections"""
        self.db.dispose()
        if self.queue_db is not self.db:
            self.queue_db.dispose()

    async def __aenter__(self) -> 'InvoiceX':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
        self.close()
