import uuid
from decimal import Decimal
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from quotagate.core.logging import get_logger
from quotagate.models.plan import (
    FEATURE_ADVANCED_SEARCH,
    FEATURE_DOC_CRUD,
    FEATURE_SHARING,
    FEATURE_VERSIONING,
    UNLIMITED,
    Plan,
)
from quotagate.schemas.plan import PlanCreate

logger = get_logger(__name__)

DEFAULT_PLANS = [
    PlanCreate(
        name="Free",
        features=[FEATURE_DOC_CRUD],
        limits={"max_documents": 10, "max_storage_mb": 100},
        price=Decimal("0"),
    ),
    PlanCreate(
        name="Pro",
        features=[FEATURE_DOC_CRUD, FEATURE_SHARING, FEATURE_VERSIONING],
        limits={"max_documents": 200, "max_storage_mb": 5000},
        price=Decimal("29.99"),
    ),
    PlanCreate(
        name="Enterprise",
        features=[FEATURE_DOC_CRUD, FEATURE_SHARING, FEATURE_VERSIONING, FEATURE_ADVANCED_SEARCH],
        limits={"max_documents": UNLIMITED, "max_storage_mb": UNLIMITED},
        price=Decimal("99.99"),
    ),
]

async def get_plan(db: AsyncSession, plan_id: uuid.UUID) -> Plan | None:
    return await db.get(Plan, plan_id)

async def get_plan_by_name(db: AsyncSession, name: str) -> Plan | None:
    result = await db.execute(select(Plan).filter(Plan.name == name))
    return result.scalars().first()

async def list_active_plans(db: AsyncSession) -> List[Plan]:
    """
    Active plans, cheapest first.
    """
    result = await db.execute(
        select(Plan).filter(Plan.is_active == True).order_by(Plan.price.asc(), Plan.name.asc())
    )
    return result.scalars().all()

async def create_plan(db: AsyncSession, plan_in: PlanCreate) -> Plan:
    new_plan = Plan(**plan_in.model_dump())
    db.add(new_plan)
    await db.commit()
    await db.refresh(new_plan)
    return new_plan

async def seed_default_plans(db: AsyncSession) -> List[Plan]:
    """
    Creates the default plan catalogue. Plans that already exist (by name) are left untouched.
    """
    plans = []
    for plan_in in DEFAULT_PLANS:
        plan = await get_plan_by_name(db, plan_in.name)
        if plan is None:
            plan = await create_plan(db, plan_in)
            logger.info("plan_seeded", plan=plan.name, features=plan.features, limits=plan.limits)
        plans.append(plan)
    return plans
