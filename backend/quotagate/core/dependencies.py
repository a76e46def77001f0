from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from quotagate.core.async_context import get_async_context
from quotagate.core.logging import get_logger
from quotagate.core.security import oauth2_scheme
from quotagate.database import get_db
from quotagate.models.user import ROLE_ADMIN, User
from quotagate.schemas.user import UserCreate
from quotagate.services.user_service import claim_added_member, create_user_with_organization, get_user_by_supabase_id

logger = get_logger(__name__)


async def get_current_user(
    db: AsyncSession = Depends(get_db),
    token: str = Depends(oauth2_scheme)
) -> User:
    """
    A dependency that gets the current user.
    If the user is authenticated with Supabase but doesn't exist in our
    local DB, it creates (provisions) a new user and organization for them.
    The returned user carries the organization id and role the rest of the
    request is scoped to.
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    try:
        supabase_client = await get_async_context().supabase_client()
        auth_response = await supabase_client.auth.get_user(token)
    except Exception as e:
        logger.warning("token_verification_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    auth_user = auth_response.user if auth_response else None
    if not auth_user or not auth_user.email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token"
        )

    local_user = await get_user_by_supabase_id(db, supabase_id=auth_user.id)
    if local_user:
        return local_user

    user_create_schema = UserCreate(
        supabase_auth_id=auth_user.id,
        email=auth_user.email,
        full_name=(auth_user.user_metadata or {}).get("full_name")
    )
    # Someone an admin already added to their organization joins it.
    claimed_user = await claim_added_member(db, user_create_schema)
    if claimed_user:
        return claimed_user

    # Provisioning errors (e.g. no active plan) surface as QuotaGateError with their own status.
    logger.info("provisioning_user", email=auth_user.email)
    return await create_user_with_organization(db, user_in=user_create_schema)


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Only organization administrators may change the subscription or add members."""
    if current_user.role != ROLE_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user
