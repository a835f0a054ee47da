"""
Async Job Worker

Polls the operations table for pending jobs and executes them.
Supports:
- Concurrency control
- Rate limiting of job starts
- Per-job timeout
- Retries with exponential backoff
- Dead letter handling with an exhaustion hook
"""

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import BaseModel
from sqlalchemy import or_, select

from invoicex.db.connection import Database
from invoicex.db.models import Operation
from invoicex.jobs.queue import INVOICE_EXTRACTION, JobStatus
from invoicex.jobs.rate_limiter import RateLimitConfig, RateLimiter
from invoicex.processors.base import ProcessingResult, best_effort
from invoicex.utils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class WorkerConfig:
    """Worker configuration"""
    # Polling
    poll_interval: float = 1.0  # seconds
    batch_size: int = 10

    # Concurrency
    max_concurrent: int = 5
    rate_limit: Optional[RateLimitConfig] = field(default_factory=RateLimitConfig)

    # Retries
    max_attempts: int = 3
    retry_delay_base: float = 5.0  # seconds
    retry_delay_max: float = 300.0  # seconds

    # Timeouts
    job_timeout: float = 120.0  # seconds
    stale_job_timeout: float = 600.0  # seconds (jobs processing too long)

    # Operation types to process
    operation_types: List[str] = field(default_factory=lambda: [INVOICE_EXTRACTION])

    # Graceful shutdown
    shutdown_timeout: float = 30.0

    def retry_delay(self, attempts: int) -> float:
        """Backoff before the next attempt after ``attempts`` failed ones"""
        return min(self.retry_delay_base * (2 ** max(attempts - 1, 0)), self.retry_delay_max)


class Worker:
    """
    Async job worker for processing document operations.

    Polls the operations table for pending jobs and executes them
    using registered handlers. A handler is an async callable taking the
    claimed Operation; it may expose ``on_exhausted(operation, error)``,
    which is awaited when the job moves to the dead letter state.

    Usage:
        worker = Worker(queue_db, config)

        # Register handlers
        worker.register_handler(INVOICE_EXTRACTION, InvoiceJobHandler(processor, queue))

        # Run worker
        await worker.run()
    """

    def __init__(self, db: Database, config: Optional[WorkerConfig] = None):
        self.db = db
        self.config = config or WorkerConfig()
        self.rate_limiter = RateLimiter(self.config.rate_limit) if self.config.rate_limit else None

        # Handlers for different operation types
        self._handlers: Dict[str, Callable] = {}

        # State
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._active_jobs: Set[str] = set()
        self._semaphore = asyncio.Semaphore(self.config.max_concurrent)

        # Metrics
        self._processed_count = 0
        self._failed_count = 0
        self._retried_count = 0
        self._start_time: Optional[datetime] = None

    def register_handler(self, operation_type: str, handler: Callable[[Operation], Any]) -> None:
        """
        Register a handler for an operation type.

        Args:
            operation_type: Type of operation to handle
            handler: Async function that processes the operation
        """
        self._handlers[operation_type] = handler
        logger.info(f"Registered handler for operation type: {operation_type}")

    @property
    def running(self) -> bool:
        return self._running

    async def run(self, install_signal_handlers: bool = True) -> None:
        """
        Run the worker.

        Polls for pending operations and executes them until shutdown.

        Args:
            install_signal_handlers: Stop on SIGTERM/SIGINT; disable when the
                worker is embedded in another application
        """
        logger.info("Starting worker...")

        self._running = True
        self._start_time = utcnow()

        if install_signal_handlers:
            self._setup_signal_handlers()

        try:
            while self._running and not self._shutdown_event.is_set():
                try:
                    await asyncio.to_thread(self.recover_stale_jobs)
                    operations = await asyncio.to_thread(self.poll_operations)

                    if operations:
                        tasks = [self.process_operation(op) for op in operations]
                        await asyncio.gather(*tasks, return_exceptions=True)
                        continue

                    # Wait before next poll
                    try:
                        await asyncio.wait_for(
                            self._shutdown_event.wait(),
                            timeout=self.config.poll_interval
                        )
                    except asyncio.TimeoutError:
                        pass

                except Exception as e:
                    logger.exception(f"Worker loop error: {e}")
                    await asyncio.sleep(self.config.poll_interval)

        finally:
            if self._active_jobs:
                logger.info(f"Waiting for {len(self._active_jobs)} active jobs to complete...")
                try:
                    await asyncio.wait_for(
                        self._wait_for_active_jobs(),
                        timeout=self.config.shutdown_timeout
                    )
                except asyncio.TimeoutError:
                    logger.warning("Shutdown timeout - some jobs may not have completed")

            self._running = False
            logger.info(
                f"Worker stopped. Processed: {self._processed_count}, Failed: {self._failed_count}"
            )

    async def stop(self) -> None:
        """Stop the worker gracefully"""
        logger.info("Stopping worker...")
        self._running = False
        self._shutdown_event.set()

    def poll_operations(self) -> List[Operation]:
        """Claim pending operations that are due"""
        if not self._handlers:
            return []
        now = utcnow()
        try:
            with self.db.transaction() as session:
                query = (
                    select(Operation)
                    .where(
                        Operation.status == JobStatus.PENDING.value,
                        Operation.operation_type.in_(list(self._handlers.keys())),
                        or_(Operation.retry_after.is_(None), Operation.retry_after <= now)
                    )
                    .order_by(Operation.created_at)
                    .limit(self.config.batch_size)
                    .with_for_update(skip_locked=True)
                )
                operations = list(session.execute(query).scalars())

                for op in operations:
                    op.status = JobStatus.PROCESSING.value
                    op.started_at = now
                    op.attempts = (op.attempts or 0) + 1
                    op.retry_after = None

            return operations

        except Exception as e:
            logger.error(f"Failed to poll operations: {e}")
            return []

    def recover_stale_jobs(self) -> int:
        """
        Return jobs stuck in PROCESSING to the queue

        Jobs are stuck when the worker running them died.

        Returns:
            Number of jobs recovered
        """
        cutoff = utcnow() - timedelta(seconds=self.config.stale_job_timeout)
        with self.db.transaction() as session:
            query = select(Operation).where(
                Operation.status == JobStatus.PROCESSING.value,
                Operation.started_at < cutoff
            )
            stale = [op for op in session.execute(query).scalars() if op.id not in self._active_jobs]
            for op in stale:
                op.status = JobStatus.PENDING.value
                op.error = "Recovered stale job"
        if stale:
            logger.warning(f"Recovered {len(stale)} stale jobs")
        return len(stale)

    async def process_operation(self, operation: Operation) -> None:
        """Process a single claimed operation"""
        async with self._semaphore:
            if self.rate_limiter is not None:
                await self.rate_limiter.acquire()
            self._active_jobs.add(operation.id)

            try:
                handler = self._handlers.get(operation.operation_type)
                if not handler:
                    logger.error(f"No handler for operation type: {operation.operation_type}")
                    await asyncio.to_thread(self._mark_failed, operation.id, "No handler registered")
                    return

                try:
                    result = await asyncio.wait_for(
                        handler(operation),
                        timeout=self.config.job_timeout
                    )
                except asyncio.TimeoutError:
                    await self._handle_retry(
                        operation, handler, f"Job timed out after {self.config.job_timeout}s"
                    )
                except Exception as e:
                    await self._handle_retry(operation, handler, str(e) or e.__class__.__name__)
                else:
                    if isinstance(result, ProcessingResult) and not result.success:
                        # Permanent failure reported by the handler, not retried
                        await asyncio.to_thread(self._mark_failed, operation.id, result.error)
                    else:
                        await asyncio.to_thread(self._mark_completed, operation.id, result)
                        self._processed_count += 1

            finally:
                self._active_jobs.discard(operation.id)

    def _mark_completed(self, operation_id: str, result: Any = None) -> None:
        """Mark operation as completed"""
        if isinstance(result, BaseModel):
            result = result.model_dump(mode='json')
        elif isinstance(result, ProcessingResult):
            result = result.content
        try:
            with self.db.transaction() as session:
                operation = session.get(Operation, operation_id)
                if operation:
                    operation.status = JobStatus.COMPLETED.value
                    operation.completed_at = utcnow()
                    operation.progress = 100
                    operation.error = None
                    if result is not None:
                        operation.details = {**(operation.details or {}), 'result': result}

        except Exception as e:
            logger.error(f"Failed to mark operation completed: {e}")

    def _mark_failed(self, operation_id: str, error: Optional[str]) -> None:
        """Mark operation as failed"""
        try:
            with self.db.transaction() as session:
                operation = session.get(Operation, operation_id)
                if operation:
                    operation.status = JobStatus.FAILED.value
                    operation.completed_at = utcnow()
                    operation.error = error

            self._failed_count += 1

        except Exception as e:
            logger.error(f"Failed to mark operation failed: {e}")

    async def _handle_retry(self, operation: Operation, handler: Callable, error: str) -> None:
        """Schedule a retry, or dead-letter the job once attempts run out"""
        try:
            exhausted = await asyncio.to_thread(self._schedule_retry, operation.id, error)
        except Exception as e:
            logger.error(f"Failed to handle retry: {e}")
            return
        if exhausted is None:
            return

        if exhausted:
            self._failed_count += 1
            on_exhausted = getattr(handler, 'on_exhausted', None)
            if on_exhausted is not None:
                (await best_effort("Exhausted job hook", on_exhausted, operation, error)).unwrap_or(None)
        else:
            self._retried_count += 1

    def _schedule_retry(self, operation_id: str, error: str) -> Optional[bool]:
        """
        Put a failed job back on the queue with a backoff delay

        Returns:
            True when the job was dead-lettered, None if it no longer exists
        """
        with self.db.transaction() as session:
            current = session.get(Operation, operation_id)
            if not current:
                return None
            attempts = current.attempts or 0

            if attempts >= self.config.max_attempts:
                current.status = JobStatus.DEAD_LETTER.value
                current.error = f"Max attempts exceeded. Last error: {error}"
                current.completed_at = utcnow()
                logger.warning(f"Operation {operation_id} moved to dead letter: {error}")
                return True

            delay = self.config.retry_delay(attempts)
            current.status = JobStatus.PENDING.value
            current.error = error
            current.retry_after = utcnow() + timedelta(seconds=delay)
            current.details = {**(current.details or {}), 'last_error': error}
            logger.info(
                f"Operation {operation_id} scheduled for retry "
                f"({attempts}/{self.config.max_attempts}) in {delay}s"
            )
            return False

    async def _wait_for_active_jobs(self) -> None:
        """Wait for all active jobs to complete"""
        while self._active_jobs:
            await asyncio.sleep(0.5)

    def _setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown"""
        try:
            loop = asyncio.get_running_loop()

            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(
                    sig,
                    lambda: asyncio.create_task(self.stop())
                )
        except (NotImplementedError, RuntimeError):
            # Signal handling not available (e.g., Windows)
            pass

    def get_stats(self) -> Dict[str, Any]:
        """Get worker statistics"""
        uptime = None
        if self._start_time:
            uptime = (utcnow() - self._start_time).total_seconds()

        return {
            'running': self._running,
            'active_jobs': len(self._active_jobs),
            'processed_count': self._processed_count,
            'failed_count': self._failed_count,
            'retried_count': self._retried_count,
            'uptime_seconds': uptime,
            'handlers_registered': list(self._handlers.keys()),
            'rate_limit': self.rate_limiter.get_stats() if self.rate_limiter else None
        }

