import uuid
from typing import List
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from quotagate.core.exceptions import UserExistsError
from quotagate.core.logging import get_logger
from quotagate.schemas.user import MemberCreate, UserCreate
from quotagate.schemas.organization import OrganizationCreate
from .organization_service import add_organization, start_usage

from quotagate.models.user import User

logger = get_logger(__name__)

async def get_user_by_supabase_id(db: AsyncSession, supabase_id: uuid.UUID) -> User | None:
    """
    Fetches a user from our database using their Supabase Auth ID.
    """
    result = await db.execute(select(User).filter(User.supabase_auth_id == supabase_id))
    return result.scalars().first()

async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).filter(User.email == email))
    return result.scalars().first()

async def get_users_by_organization(db: AsyncSession, organization_id: uuid.UUID) -> List[User]:
    result = await db.execute(
        select(User).filter(User.organization_id == organization_id).order_by(User.created_at)
    )
    return result.scalars().all()

async def add_member(db: AsyncSession, organization_id: uuid.UUID, member_in: MemberCreate) -> User:
    """
    Adds a user to an existing organization. The account is linked to a
    Supabase identity the first time that email logs in.
    """
    if await get_user_by_email(db, member_in.email) is not None:
        raise UserExistsError(member_in.email)

    member = User(
        email=member_in.email,
        organization_id=organization_id,
        full_name=member_in.full_name,
        role=member_in.role,
    )
    db.add(member)
    try:
        await db.commit()
    except IntegrityError as e:
        # Registered concurrently under the same email.
        await db.rollback()
        raise UserExistsError(member_in.email) from e
    await db.refresh(member)
    logger.info("member_added", organization_id=str(organization_id), user_id=str(member.id), role=member.role)
    return member

async def claim_added_member(db: AsyncSession, user_in: UserCreate) -> User | None:
    """
    Links a first-time login to the account an admin added for that email,
    if there is one still waiting to be claimed.
    """
    result = await db.execute(
        select(User).filter(User.email == user_in.email, User.supabase_auth_id.is_(None))
    )
    member = result.scalars().first()
    if member is None:
        return None

    member.supabase_auth_id = user_in.supabase_auth_id
    if member.full_name is None:
        member.full_name = user_in.full_name
    await db.commit()
    await db.refresh(member)
    logger.info("member_claimed", organization_id=str(member.organization_id), user_id=str(member.id))
    return member

async def create_user_with_organization(db: AsyncSession, user_in: UserCreate) -> User:
    """
    Creates a new user and their initial organization.
    The organization is subscribed to the default plan; the user administers it.
    The organization, its subscription and the user are committed together.
    """
    # The local part can repeat across domains, so the slug uses the whole address.
    org_name = f"{user_in.email.split('@')[0]}'s Organization"
    try:
        new_organization = await add_organization(
            db, OrganizationCreate(name=org_name, slug=user_in.email)
        )
        new_user = User(
            email=user_in.email,
            supabase_auth_id=user_in.supabase_auth_id,
            organization_id=new_organization.id,
            full_name=user_in.full_name,
            role=user_in.role
        )
        db.add(new_user)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise UserExistsError(user_in.email) from e
    except Exception:
        await db.rollback()
        raise
    await db.refresh(new_user)
    await db.refresh(new_organization)
    await start_usage(db, new_organization)
    return new_user
