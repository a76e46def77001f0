from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from quotagate.models.subscription import Subscription
from quotagate.services import entitlement_service


@pytest.mark.asyncio
async def test_read_organization_with_members(
    test_client: AsyncClient, organization, admin_user, member_user, login_as
):
    login_as(member_user)

    response = await test_client.get("/api/v1/organization")

    assert response.status_code == 200
    data = response.json()
    assert data["organization"]["id"] == str(organization.id)
    assert data["organization"]["name"] == "Acme Corp"
    assert sorted(member["email"] for member in data["members"]) == ["member@acme.io", "owner@acme.io"]
    assert {member["role"] for member in data["members"]} == {"admin", "member"}


@pytest.mark.asyncio
async def test_admin_adds_a_member(test_client: AsyncClient, organization, admin_user, login_as):
    login_as(admin_user)

    response = await test_client.post(
        "/api/v1/organization/members", json={"email": "new.hire@acme.io", "full_name": "New Hire"}
    )

    assert response.status_code == 201
    data = response.json()
    assert data["organization_id"] == str(organization.id)
    assert data["role"] == "member"
    assert data["supabase_auth_id"] is None

    members = (await test_client.get("/api/v1/organization")).json()["members"]
    assert "new.hire@acme.io" in [member["email"] for member in members]


@pytest.mark.asyncio
async def test_members_cannot_add_members(test_client: AsyncClient, member_user, login_as):
    login_as(member_user)

    response = await test_client.post("/api/v1/organization/members", json={"email": "friend@acme.io"})

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_adding_a_registered_email_conflicts(test_client: AsyncClient, admin_user, member_user, login_as):
    login_as(admin_user)

    response = await test_client.post("/api/v1/organization/members", json={"email": "member@acme.io"})

    assert response.status_code == 409
    assert response.json()["error_code"] == "USER_EXISTS"


@pytest.mark.asyncio
async def test_unknown_role_is_rejected(test_client: AsyncClient, admin_user, login_as):
    login_as(admin_user)

    response = await test_client.post(
        "/api/v1/organization/members", json={"email": "root@acme.io", "role": "super_admin"}
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_organization_requires_an_active_subscription(
    test_client: AsyncClient, db_session: AsyncSession, admin_user, login_as
):
    entitlement = await entitlement_service.resolve_entitlement(db_session, admin_user.organization_id)
    subscription = await db_session.get(Subscription, entitlement.subscription_id)
    subscription.end_date = datetime.now(timezone.utc) - timedelta(days=1)
    await db_session.commit()
    login_as(admin_user)

    response = await test_client.get("/api/v1/organization")

    assert response.status_code == 403
    assert response.json()["error_code"] == "ENTITLEMENT_EXPIRED"
