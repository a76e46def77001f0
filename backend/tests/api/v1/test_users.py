import uuid
from types import SimpleNamespace

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from quotagate.core import dependencies
from quotagate.core.dependencies import get_current_user
from quotagate.main import app
from quotagate.models.organization import Organization
from quotagate.models.user import ROLE_ADMIN, User
from quotagate.services import entitlement_service


class FakeAuth:
    def __init__(self, user):
        self.user = user

    async def get_user(self, token):
        if token != "valid-token":
            raise RuntimeError("invalid JWT")
        return SimpleNamespace(user=self.user)


class FakeContext:
    def __init__(self, user):
        self.client = SimpleNamespace(auth=FakeAuth(user))

    async def supabase_client(self):
        return self.client


@pytest.fixture
def supabase_user(monkeypatch):
    user = SimpleNamespace(id=uuid.uuid4(), email="grace@hopper.dev", user_metadata={"full_name": "Grace Hopper"})
    monkeypatch.setattr(dependencies, "get_async_context", lambda: FakeContext(user))
    return user


AUTH = {"Authorization": "Bearer valid-token"}


@pytest.mark.asyncio
async def test_missing_token_is_unauthorized(test_client: AsyncClient):
    response = await test_client.get("/api/v1/users/me")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_invalid_token_is_unauthorized(test_client: AsyncClient, supabase_user):
    response = await test_client.get("/api/v1/users/me", headers={"Authorization": "Bearer forged"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_first_login_provisions_user_and_organization(
    test_client: AsyncClient, db_session: AsyncSession, plans, supabase_user
):
    response = await test_client.get("/api/v1/users/me", headers=AUTH)

    assert response.status_code == 200
    data = response.json()
    assert data["email"] == "grace@hopper.dev"
    assert data["full_name"] == "Grace Hopper"
    assert data["role"] == "admin"

    entitlement = await entitlement_service.require_entitlement(db_session, uuid.UUID(data["organization_id"]))
    assert entitlement.plan.name == "Free"

    again = await test_client.get("/api/v1/users/me", headers=AUTH)
    assert again.json()["id"] == data["id"]


@pytest.mark.asyncio
async def test_provisioning_fails_cleanly_without_plans(
    test_client: AsyncClient, db_session: AsyncSession, supabase_user
):
    response = await test_client.get("/api/v1/users/me", headers=AUTH)

    assert response.status_code == 500
    assert response.json()["error_code"] == "PLAN_CONFIGURATION_ERROR"
    count = await db_session.execute(select(func.count()).select_from(Organization))
    assert count.scalar_one() == 0


@pytest.mark.asyncio
async def test_organization_members(test_client: AsyncClient, admin_user, member_user, login_as):
    login_as(member_user)

    response = await test_client.get("/api/v1/users/organization-members")

    assert response.status_code == 200
    assert sorted(user["email"] for user in response.json()) == ["member@acme.io", "owner@acme.io"]


@pytest.mark.asyncio
async def test_added_member_joins_the_organization_on_first_login(
    test_client: AsyncClient, db_session: AsyncSession, organization, admin_user, plans, login_as, supabase_user
):
    login_as(admin_user)
    added = await test_client.post(
        "/api/v1/organization/members", json={"email": "grace@hopper.dev"}
    )
    assert added.status_code == 201
    app.dependency_overrides.pop(get_current_user)

    response = await test_client.get("/api/v1/users/me", headers=AUTH)

    assert response.status_code == 200
    data = response.json()
    assert data["id"] == added.json()["id"]
    assert data["organization_id"] == str(organization.id)
    assert data["role"] == "member"
    assert data["supabase_auth_id"] == str(supabase_user.id)
    assert data["full_name"] == "Grace Hopper"
    count = await db_session.execute(select(func.count()).select_from(Organization))
    assert count.scalar_one() == 1

    # Members can now be shared with once the plan allows it.
    await entitlement_service.change_plan(db_session, organization.id, plans["Pro"].id)
    login_as(admin_user)
    document = await test_client.post(
        "/api/v1/documents/",
        data={"title": "Roadmap"},
        files={"file": ("roadmap.txt", b"Q1", "text/plain")},
    )
    shared = await test_client.post(
        f"/api/v1/documents/{document.json()['id']}/share", json={"user_ids": [data["id"]]}
    )
    assert shared.status_code == 200
    assert shared.json()["shared_with"] == [data["id"]]


@pytest.mark.asyncio
async def test_failed_provisioning_leaves_no_organization(
    test_client: AsyncClient, db_session: AsyncSession, organization, supabase_user
):
    # Same email, different identity: the user insert violates the unique email.
    db_session.add(
        User(
            supabase_auth_id=uuid.uuid4(),
            organization_id=organization.id,
            email="grace@hopper.dev",
            role=ROLE_ADMIN,
        )
    )
    await db_session.commit()

    response = await test_client.get("/api/v1/users/me", headers=AUTH)

    assert response.status_code == 409
    assert response.json()["error_code"] == "USER_EXISTS"
    count = await db_session.execute(select(func.count()).select_from(Organization))
    assert count.scalar_one() == 1
