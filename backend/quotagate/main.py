from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from quotagate.api.v1.endpoints import users, organizations, plans, subscriptions, documents
from quotagate.core.async_context import close_async_context
from quotagate.core.exceptions import QuotaGateError
from quotagate.core.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("app_started")
    yield
    await close_async_context()
    logger.info("app_stopped")


app = FastAPI(
    title="QuotaGate API",
    description="Usage metering and entitlement enforcement for multi-tenant document storage.",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(QuotaGateError)
async def quotagate_error_handler(request: Request, exc: QuotaGateError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(users.router, prefix="/api/v1/users", tags=["Users"])
app.include_router(organizations.router, prefix="/api/v1/organization", tags=["Organization"])
app.include_router(plans.router, prefix="/api/v1/plans", tags=["Plans"])
app.include_router(subscriptions.router, prefix="/api/v1/subscriptions", tags=["Subscriptions"])
app.include_router(documents.router, prefix="/api/v1/documents", tags=["Documents"])


@app.get("/health", tags=["Health"])
def health_check():
    return {"status": "ok"}
