"""
Decorators wrapping every call into the Azure DevOps SDK.

SDK and msrest exceptions are translated into the errors.py hierarchy and
each call is bounded in time. Nothing here retries: a failed call is
reported and the operator decides whether to rerun.
"""

import asyncio
import logging
from functools import wraps
from typing import Callable, Optional, TypeVar

from .errors import (
    AzureDevOpsError,
    BadRequestError,
    map_status_code_to_error,
    TimeoutError as ADOTimeoutError
)
from .log_sanitizer import sanitize_error

T = TypeVar('T')

logger = logging.getLogger(__name__)


def _status_code_of(error: Exception) -> Optional[int]:
    """Find an HTTP status code on an SDK or msrest exception."""
    status_code = getattr(error, 'status_code', None)

    if not status_code and hasattr(error, 'response'):
        response = getattr(error, 'response', None)
        if response is not None:
            status_code = getattr(response, 'status_code', None)

    # msrest HttpOperationError keeps the requests.Response on .response,
    # AzureDevOpsServiceError keeps the wrapped exception on .inner_exception
    inner = getattr(error, 'inner_exception', None)
    if not isinstance(status_code, int) and isinstance(inner, Exception):
        status_code = _status_code_of(inner)

    return status_code if isinstance(status_code, int) else None


def _retry_after_of(error: Exception) -> Optional[int]:
    response = getattr(error, 'response', None)
    headers = getattr(response, 'headers', None) if response is not None else None
    if not headers:
        return None

    value = headers.get('Retry-After') or headers.get('retry-after')
    if not value:
        return None
    try:
        return int(value)
    except (ValueError, TypeError):
        logger.warning(f"Ignoring unparseable Retry-After header: {value}")
        return None


def handle_ado_error(func: Callable[..., T]) -> Callable[..., T]:
    """
    Translate exceptions raised by an SDK call into AzureDevOpsError.

    Errors already in the hierarchy pass through untouched; anything with an
    HTTP status becomes the matching subclass; everything else is wrapped in
    the base class with the function name for context.

    Example:
        @handle_ado_error
        async def _update_query_wiql(self, query_id: str, wiql: str):
            return self.wit_client.update_query(...)
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except AzureDevOpsError:
            raise
        except Exception as e:
            status_code = _status_code_of(e)

            if status_code:
                extra = {}
                if status_code == 429:
                    extra['retry_after'] = _retry_after_of(e)

                error = map_status_code_to_error(status_code, original_error=e, **extra)
                logger.debug(f"{func.__name__} failed: {sanitize_error(error)}")
                raise error

            logger.debug(f"{func.__name__} raised {type(e).__name__}: {sanitize_error(e)}")
            raise AzureDevOpsError(
                message=f"Unexpected error in {func.__name__}: {sanitize_error(e)}",
                original_error=e
            )

    return wrapper


def with_timeout(timeout_seconds: int = 30) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Fail a coroutine with TimeoutError (408) when it runs longer than timeout_seconds."""
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout_seconds)
            except asyncio.TimeoutError as e:
                logger.debug(f"{func.__name__} gave up after {timeout_seconds}s")
                raise ADOTimeoutError(timeout_seconds=timeout_seconds, original_error=e)

        return wrapper
    return decorator


def azure_devops_operation(timeout_seconds: int = 30) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Standard wrapper for one SDK call: error translation inside a time limit.

    Example:
        @azure_devops_operation(timeout_seconds=60)
        async def _get_work_item_batch(self, ids, fields):
            return self.wit_client.get_work_items(ids=ids, ...)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        return with_timeout(timeout_seconds)(handle_ado_error(func))

    return decorator


def validate_work_item_id(func: Callable[..., T]) -> Callable[..., T]:
    """
    Refuse to send a request for anything but a positive integer work item id.

    The id is read from the ``work_item_id`` keyword or the first positional
    argument after ``self``.
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        work_item_id = kwargs.get('work_item_id', args[1] if len(args) > 1 else None)

        if work_item_id is not None:
            if isinstance(work_item_id, bool) or not isinstance(work_item_id, int) or work_item_id <= 0:
                raise BadRequestError(message=f"Work item id must be a positive integer, got {work_item_id!r}")

        return await func(*args, **kwargs)

    return wrapper
