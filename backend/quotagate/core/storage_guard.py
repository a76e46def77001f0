import asyncio
import functools
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from quotagate.core.config import settings
from quotagate.core.exceptions import StorageUnavailableError
from quotagate.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def storage_guard(operation: str) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Bound a storage coroutine by STORAGE_TIMEOUT_SECONDS and fail closed.

    Timeouts and SQLAlchemy errors become StorageUnavailableError. The
    decorated coroutine must take the AsyncSession as its first argument
    (or as `db=`); the session is rolled back before the error is raised so
    it stays usable for the rest of the request.
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await asyncio.wait_for(
                    func(*args, **kwargs), timeout=settings.STORAGE_TIMEOUT_SECONDS
                )
            except (SQLAlchemyError, asyncio.TimeoutError) as exc:
                logger.error(
                    "storage_unavailable",
                    operation=operation,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                db = args[0] if args else kwargs.get("db")
                if isinstance(db, AsyncSession):
                    await _rollback_quietly(db, operation)
                raise StorageUnavailableError(operation) from exc
        return wrapper
    return decorator


async def _rollback_quietly(db: AsyncSession, operation: str) -> None:
    try:
        await db.rollback()
    except SQLAlchemyError as exc:
        logger.warning("storage_rollback_failed", operation=operation, error=str(exc))
