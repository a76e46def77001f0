# backend/quotagate/core/async_context.py
from contextvars import ContextVar
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions
from quotagate.core.config import settings

_async_state_var: ContextVar = ContextVar("async_state", default=None)

class AsyncContext:
    """A container for lazily initialized async resources."""
    def __init__(self):
        self._engine = None
        self._session_factory = None
        self._supabase_client = None

    @property
    def engine(self):
        if self._engine is None:
            connect_args = {}
            if settings.DATABASE_URL.startswith("sqlite"):
                # Writers wait on the SQLite lock no longer than a storage call may take.
                connect_args["timeout"] = settings.STORAGE_TIMEOUT_SECONDS
            self._engine = create_async_engine(
                settings.DATABASE_URL, pool_pre_ping=True, connect_args=connect_args
            )
        return self._engine

    @property
    def session_factory(self):
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(self.engine, expire_on_commit=False, class_=AsyncSession)
        return self._session_factory

    async def supabase_client(self) -> AsyncClient:
        # The async Supabase client is created by a coroutine, so this is a method, not a property.
        if self._supabase_client is None:
            self._supabase_client = await acreate_client(
                settings.SUPABASE_URL,
                settings.SUPABASE_ANON_KEY,
                options=AsyncClientOptions(auto_refresh_token=False, persist_session=False),
            )
        return self._supabase_client

    async def close(self):
        """Gracefully close all open connections."""
        if self._engine:
            await self._engine.dispose()
        # Reset all
        self._engine = None; self._session_factory = None
        self._supabase_client = None

def get_async_context() -> AsyncContext:
    if (ctx := _async_state_var.get()) is None:
        ctx = AsyncContext()
        _async_state_var.set(ctx)
    return ctx

async def close_async_context():
    if (ctx := _async_state_var.get()) is not None:
        await ctx.close()
        _async_state_var.set(None)
