"""
Seed the default plan catalogue (Free, Pro, Enterprise).

Run from the backend directory after `alembic upgrade head`:

    python ../tools/seed_plans.py
"""
import asyncio

from quotagate.core.async_context import close_async_context, get_async_context
from quotagate.core.logging import get_logger, setup_logging
from quotagate.services import plan_service

logger = get_logger("seed_plans")


async def main():
    setup_logging()
    session_factory = get_async_context().session_factory
    try:
        async with session_factory() as db:
            plans = await plan_service.seed_default_plans(db)
        logger.info("seed_complete", plans=[plan.name for plan in plans])
    finally:
        await close_async_context()


if __name__ == "__main__":
    asyncio.run(main())
