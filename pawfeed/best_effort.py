"""Best-effort side operations (view counts, prefetch, cache invalidation).

Failures are captured into a :class:`BestEffort` outcome and logged; they are
never raised to the caller of the primary operation.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Optional

from pawfeed.logging_config import logger


@dataclass(frozen=True)
class BestEffort:
    """Outcome of a best-effort operation."""

    operation: str
    ok: bool
    error: Optional[str] = None
    value: Any = None

    @classmethod
    def success(cls, operation: str, value: Any = None) -> "BestEffort":
        return cls(operation=operation, ok=True, value=value)

    @classmethod
    def failure(cls, operation: str, error: BaseException) -> "BestEffort":
        return cls(operation=operation, ok=False, error=f"{type(error).__name__}: {error}")


async def best_effort(operation: str, awaitable: Awaitable[Any], **log_context) -> BestEffort:
    """
    Await ``awaitable`` and turn any exception into a logged failure outcome.

    Args:
        operation: Short name used in logs and in the returned outcome
        awaitable: The coroutine to run
        **log_context: Extra structured fields for the log line

    Returns:
        BestEffort outcome carrying the awaited value on success
    """
    try:
        value = await awaitable
    except Exception as e:
        logger.warning(
            "Best-effort operation failed",
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
            **log_context,
        )
        return BestEffort.failure(operation, e)
    return BestEffort.success(operation, value)
