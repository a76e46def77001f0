from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from quotagate.schemas.user import User
from quotagate.core.dependencies import get_current_user
from quotagate.database import get_db
from quotagate.services import user_service

router = APIRouter()

@router.get("/me", response_model=User)
async def read_users_me(current_user: User = Depends(get_current_user)):
    """
    Get the profile of the currently authenticated user.
    If the user does not exist in our DB, they will be created together with
    an organization on the default plan.
    """
    return current_user

@router.get("/organization-members", response_model=List[User])
async def list_organization_members(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    List the members of the current user's organization.
    """
    return await user_service.get_users_by_organization(db, current_user.organization_id)
