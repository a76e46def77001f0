# backend/quotagate/database.py
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

# The engine and session factory live in the async context so they are
# created per process (and per event loop), not at import time.
from quotagate.core.async_context import get_async_context

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency to get an async database session from the async context.
    """
    async_context = get_async_context()
    session_factory = async_context.session_factory

    async with session_factory() as session:
        yield session
