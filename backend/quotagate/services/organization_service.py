import re
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from quotagate.core.exceptions import OrganizationExistsError
from quotagate.core.logging import get_logger
from quotagate.models.organization import Organization
from quotagate.models.usage_record import METRIC_DOCUMENTS, METRIC_STORAGE
from quotagate.schemas.organization import OrganizationCreate
from quotagate.services import entitlement_service, usage_ledger

logger = get_logger(__name__)


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


async def get_organization(db: AsyncSession, organization_id: uuid.UUID) -> Organization | None:
    return await db.get(Organization, organization_id)


async def add_organization(db: AsyncSession, organization_in: OrganizationCreate) -> Organization:
    """
    Stage a new organization and its default-plan subscription in the
    session without committing, so callers can store more rows in the
    same transaction.
    """
    slug = slugify(organization_in.slug or organization_in.name)
    existing = await db.execute(select(Organization).filter(Organization.slug == slug))
    if existing.scalars().first() is not None:
        raise OrganizationExistsError(slug)

    new_organization = Organization(name=organization_in.name, slug=slug)
    db.add(new_organization)
    await db.flush()
    await entitlement_service.assign_default_plan(db, new_organization.id)
    return new_organization


async def start_usage(db: AsyncSession, organization: Organization) -> None:
    """Open zero usage counters for a freshly committed organization."""
    await usage_ledger.get_usage(db, organization.id, (METRIC_DOCUMENTS, METRIC_STORAGE))
    logger.info("organization_created", organization_id=str(organization.id), slug=organization.slug)


async def create_organization(db: AsyncSession, organization_in: OrganizationCreate) -> Organization:
    """
    Creates a new organization subscribed to the default plan.
    The organization and its first subscription are committed together: if no
    active plan exists, PlanConfigurationError is raised and nothing is stored.
    """
    try:
        new_organization = await add_organization(db, organization_in)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(new_organization)
    await start_usage(db, new_organization)
    return new_organization
