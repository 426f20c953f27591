"""
Retry utility functions with exponential backoff.
Categorizes collaborator errors as transient (retryable) or permanent (non-retryable).
"""

import inspect
from collections.abc import Callable
from typing import TypeVar

import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger()

T = TypeVar("T")


class TransientError(Exception):
    """A collaborator call failed in a way worth repeating (network, 429, 5xx)."""

    pass


class PermanentError(Exception):
    """A collaborator rejected the call (4xx other than 429); repeating cannot help."""

    pass


def is_transient_error(exception: Exception) -> bool:
    """
    Decide whether a failed ledger or valet call should be attempted again.

    Args:
        exception: Exception raised by the call

    Returns:
        True for transient failures, False for permanent or unknown ones
    """
    if isinstance(exception, TransientError):
        return True

    if isinstance(exception, PermanentError):
        return False

    # Network/connection errors are transient
    if isinstance(exception, httpx.TimeoutException | httpx.NetworkError):
        return True

    if isinstance(exception, httpx.HTTPStatusError):
        status_code = exception.response.status_code
        # 5xx and rate limiting are transient, any other 4xx is permanent
        return status_code >= 500 or status_code == 429

    if isinstance(exception, TimeoutError | ConnectionError):
        return True

    # Default to non-retryable for unknown errors
    return False


def _classify(exception: Exception) -> Exception:
    """Wrap an arbitrary exception as TransientError or PermanentError."""
    if isinstance(exception, TransientError | PermanentError):
        return exception
    if is_transient_error(exception):
        return TransientError(f"Transient error: {str(exception)}")
    return PermanentError(f"Permanent error: {str(exception)}")


def retry_with_backoff(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    multiplier: float = 2.0,
    max_delay: float = 60.0,
):
    """
    Decorator for retrying functions with exponential backoff.
    Only retries on transient errors. Works on both plain and async functions.

    Args:
        max_attempts: Total attempts, the first call included
        initial_delay: Lower bound of each wait in seconds
        multiplier: Exponential backoff multiplier
        max_delay: Upper bound of each wait in seconds

    Raises:
        TransientError: Still failing after max_attempts
        PermanentError: Failed in a way that is never retried
    """

    def retry_decorator(func: Callable[..., T]) -> Callable[..., T]:
        retrying = retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=multiplier, min=initial_delay, max=max_delay),
            retry=retry_if_exception_type(TransientError),
            reraise=True,
            before_sleep=_log_retry_attempt,
        )

        if inspect.iscoroutinefunction(func):

            @retrying
            async def async_wrapper(*args, **kwargs):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    classified = _classify(e)
                    if classified is e:
                        raise
                    raise classified from e

            return async_wrapper

        @retrying
        def wrapper(*args, **kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                classified = _classify(e)
                if classified is e:
                    raise
                raise classified from e

        return wrapper

    return retry_decorator


def _log_retry_attempt(retry_state: RetryCallState):
    if retry_state.outcome is None:
        return
    logger.warning(
        "Collaborator call failed, retrying",
        function=getattr(retry_state.fn, "__qualname__", None),
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()),
        wait_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
    )
