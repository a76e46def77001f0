from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from quotagate.models.user import User as UserModel
from quotagate.schemas.organization import Organization, OrganizationView
from quotagate.schemas.user import MemberCreate, User
from quotagate.core.dependencies import get_current_user, require_admin
from quotagate.database import get_db
from quotagate.services import entitlement_service, organization_service, user_service

router = APIRouter()

@router.get("", response_model=OrganizationView)
async def read_organization(
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(get_current_user)
):
    """
    The current user's organization and its members. Requires an active subscription.
    """
    await entitlement_service.require_entitlement(db, current_user.organization_id)
    organization = await organization_service.get_organization(db, current_user.organization_id)
    members = await user_service.get_users_by_organization(db, current_user.organization_id)
    return OrganizationView(
        organization=Organization.model_validate(organization),
        members=[User.model_validate(member) for member in members],
    )

@router.post("/members", response_model=User, status_code=status.HTTP_201_CREATED)
async def add_organization_member(
    member_in: MemberCreate,
    db: AsyncSession = Depends(get_db),
    current_user: UserModel = Depends(require_admin)
):
    """
    Add a user to the organization. They join it the first time they log in with that email.
    """
    await entitlement_service.require_entitlement(db, current_user.organization_id)
    return await user_service.add_member(db, current_user.organization_id, member_in)
