from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quotagate.schemas.plan import Plan
from quotagate.database import get_db
from quotagate.services import plan_service

router = APIRouter()

@router.get("/", response_model=List[Plan])
async def list_plans(db: AsyncSession = Depends(get_db)):
    """
    List the plans an organization can subscribe to, cheapest first.
    """
    return await plan_service.list_active_plans(db)
