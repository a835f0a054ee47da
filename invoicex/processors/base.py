import asyncio
import inspect
import logging
from datetime import datetime, UTC
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class ProcessingResult:
    """
    Result of a processing step

    Best-effort sub-calls return one of these instead of raising, so the
    caller decides explicitly what a failure means:

        match = (await best_effort("vendor detection", detect, text)).unwrap_or(None)
    """

    def __init__(
        self,
        success: bool,
        content: Optional[Any] = None,
        metadata: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None
    ):
        self.success = success
        self.content = content
        self.metadata = metadata or {}
        self.error = error
        self.timestamp = datetime.now(UTC)

    @classmethod
    def ok(cls, content: Any = None, **metadata) -> 'ProcessingResult':
        return cls(success=True, content=content, metadata=metadata)

    @classmethod
    def fail(cls, error: str, **metadata) -> 'ProcessingResult':
        return cls(success=False, error=error, metadata=metadata)

    def unwrap_or(self, default: Any) -> Any:
        """Return the content on success, otherwise ``default``"""
        return self.content if self.success else default

    def __repr__(self) -> str:
        if self.success:
            return f"ProcessingResult(success=True, content={self.content!r})"
        return f"ProcessingResult(success=False, error={self.error!r})"


async def best_effort(label: str, func: Callable[..., Any], *args, **kwargs) -> ProcessingResult:
    """
    Run a non-fatal sub-call and capture its outcome

    Sync and async callables are both accepted; sync ones run in a worker
    thread so blocking database writes do not stall the event loop.
    Exceptions are logged at WARNING and returned as a failed result; they
    never propagate.

    Args:
        label: Human readable name used in the log line
        func: Callable to run
        *args, **kwargs: Passed to ``func``

    Returns:
        ProcessingResult wrapping the return value or the error message
    """
    try:
        if inspect.iscoroutinefunction(func):
            value = await func(*args, **kwargs)
        else:
            value = await asyncio.to_thread(func, *args, **kwargs)
        if inspect.isawaitable(value):
            value = await value
    except Exception as e:
        logger.warning(f"{label} failed (non-fatal): {e}")
        return ProcessingResult.fail(str(e), label=label)
    if isinstance(value, ProcessingResult):
        return value
    return ProcessingResult.ok(value)
