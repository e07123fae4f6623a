import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.core.database.engine import get_db
from app.features.permissions.models import Permission, Role
from app.features.permissions.registry import registry
from app.main import app
from tests.helpers import auth

pytestmark = pytest.mark.asyncio


async def _role_id(session_factory, name: str) -> str:
    async with session_factory() as db:
        return (await db.execute(select(Role.id).where(Role.name == name))).scalar_one()


async def _permission_ids(session_factory, *keys: str) -> list[str]:
    ids = []
    async with session_factory() as db:
        for key in keys:
            resource, action = key.split(":")
            ids.append((await db.execute(
                select(Permission.id).where(Permission.resource == resource, Permission.action == action)
            )).scalar_one())
    return ids


async def test_list_and_read_roles(async_client, session_factory) -> None:
    response = await async_client.get("/rbac/roles", headers=auth("manager-noorg-token"))
    assert response.status_code == 200
    assert [r["name"] for r in response.json()] == ["admin", "manager", "member"]

    member_id = await _role_id(session_factory, "member")
    response = await async_client.get(f"/rbac/roles/{member_id}", headers=auth("manager-token"))
    assert response.status_code == 200
    keys = [f"{p['resource']}:{p['action']}" for p in response.json()["permissions"]]
    assert keys == ["organization:read", "role:read", "user:read"]

    response = await async_client.get("/rbac/roles/missing", headers=auth("manager-token"))
    assert response.status_code == 404


async def test_member_cannot_manage_roles(async_client) -> None:
    response = await async_client.get("/rbac/roles", headers=auth("member-token"))
    assert response.status_code == 403


async def test_create_role(async_client) -> None:
    response = await async_client.post(
        "/rbac/roles",
        headers=auth("manager-token"),
        json={"name": "auditor", "display_name": "Auditor"},
    )
    assert response.status_code == 403
    assert response.json()["missing"] == ["role:create"]

    response = await async_client.post(
        "/rbac/roles",
        headers=auth("admin-token"),
        json={"name": "Auditor", "display_name": "Auditor", "level": 0, "color": "green"},
    )
    assert response.status_code == 201
    body = response.json()
    assert body["name"] == "auditor"
    assert body["is_system"] is False
    assert registry.level("auditor") == 0

    response = await async_client.post(
        "/rbac/roles",
        headers=auth("admin-token"),
        json={"name": "auditor", "display_name": "Again"},
    )
    assert response.status_code == 409


async def test_manager_cannot_create_role_at_own_level(async_client, session_factory) -> None:
    manager_id = await _role_id(session_factory, "manager")
    grants = await _permission_ids(
        session_factory,
        "user:read", "user:update", "user:ban", "session:read", "session:revoke",
        "role:read", "role:assign", "role:update", "role:create",
    )
    response = await async_client.put(
        f"/rbac/roles/{manager_id}/permissions", headers=auth("admin-token"), json={"permission_ids": grants}
    )
    assert response.status_code == 200

    response = await async_client.post(
        "/rbac/roles",
        headers=auth("manager-token"),
        json={"name": "supervisor", "display_name": "Supervisor", "level": 1},
    )
    assert response.status_code == 403
    assert response.json()["error"] == "role_escalation_denied"

    response = await async_client.post(
        "/rbac/roles",
        headers=auth("manager-token"),
        json={"name": "helper", "display_name": "Helper", "level": 0},
    )
    assert response.status_code == 201


async def test_update_and_delete_roles(async_client, session_factory) -> None:
    member_id = await _role_id(session_factory, "member")
    response = await async_client.put(
        f"/rbac/roles/{member_id}", headers=auth("manager-token"), json={"display_name": "Staff"}
    )
    assert response.status_code == 200
    assert response.json()["display_name"] == "Staff"
    assert response.json()["name"] == "member"

    response = await async_client.delete(f"/rbac/roles/{member_id}", headers=auth("admin-token"))
    assert response.status_code == 403

    created = await async_client.post(
        "/rbac/roles", headers=auth("admin-token"), json={"name": "temp", "display_name": "Temp"}
    )
    response = await async_client.delete(f"/rbac/roles/{created.json()['id']}", headers=auth("admin-token"))
    assert response.status_code == 204
    assert "temp" not in registry


async def test_assign_permissions_replaces_the_set(async_client, session_factory) -> None:
    member_id = await _role_id(session_factory, "member")
    ban, read = await _permission_ids(session_factory, "user:ban", "user:read")

    response = await async_client.put(
        f"/rbac/roles/{member_id}/permissions",
        headers=auth("manager-token"),
        json={"permission_ids": [ban, read, ban]},
    )
    assert response.status_code == 200
    assert sorted(p["action"] for p in response.json()["permissions"]) == ["ban", "read"]

    response = await async_client.put(
        f"/rbac/roles/{member_id}/permissions",
        headers=auth("admin-token"),
        json={"permission_ids": []},
    )
    assert response.json()["permissions"] == []

    response = await async_client.put(
        f"/rbac/roles/{member_id}/permissions",
        headers=auth("admin-token"),
        json={"permission_ids": ["does-not-exist"]},
    )
    assert response.status_code == 400


async def test_manager_cannot_edit_own_role(async_client, session_factory) -> None:
    manager_id = await _role_id(session_factory, "manager")
    response = await async_client.put(
        f"/rbac/roles/{manager_id}/permissions",
        headers=auth("manager-token"),
        json={"permission_ids": []},
    )
    assert response.status_code == 403
    assert response.json()["error"] == "role_escalation_denied"


async def test_permissions_grouped_by_resource(async_client) -> None:
    response = await async_client.get("/rbac/permissions", headers=auth("manager-token"))
    assert response.status_code == 200
    groups = {g["resource"]: [p["action"] for p in g["permissions"]] for g in response.json()}
    assert list(groups) == ["organization", "role", "session", "user"]
    assert groups["session"] == ["delete", "read", "revoke"]


async def test_custom_roles_stay_below_admin(async_client) -> None:
    for level in (2, 9):
        response = await async_client.post(
            "/rbac/roles",
            headers=auth("admin-token"),
            json={"name": "root", "display_name": "Root", "level": level},
        )
        assert response.status_code == 403, level
        assert response.json()["error"] == "role_escalation_denied"
    assert "root" not in registry

    response = await async_client.post(
        "/rbac/roles",
        headers=auth("admin-token"),
        json={"name": "lead", "display_name": "Lead", "level": 1},
    )
    assert response.status_code == 201


async def test_my_permissions(async_client) -> None:
    response = await async_client.get("/rbac/my-permissions", headers=auth("manager-noorg-token"))
    assert response.status_code == 200
    assert response.json() == {
        "role": "manager",
        "permissions": [
            "organization:invite", "organization:read",
            "role:assign", "role:read", "role:update",
            "session:read", "session:revoke",
            "user:ban", "user:read", "user:update",
        ],
    }

    body = (await async_client.get("/rbac/my-permissions", headers=auth("admin-token"))).json()
    assert body["role"] == "admin"
    assert len(body["permissions"]) == 21

    response = await async_client.get("/rbac/my-permissions", headers=auth("member-token"))
    assert response.status_code == 403


async def test_role_effective_permissions(async_client) -> None:
    response = await async_client.get("/rbac/users/member/permissions", headers=auth("manager-token"))
    assert response.status_code == 200
    assert response.json()["permissions"] == ["organization:read", "role:read", "user:read"]

    response = await async_client.get("/rbac/users/ghost/permissions", headers=auth("manager-token"))
    assert response.json() == {"role": "ghost", "permissions": []}

    response = await async_client.get("/rbac/users/member/permissions", headers=auth("member-token"))
    assert response.status_code == 403


async def test_failed_commit_leaves_registry_untouched(session_factory, seed_identity) -> None:
    async def override_get_db():
        async with session_factory() as session:
            async def failing_commit() -> None:
                raise OperationalError("COMMIT", {}, Exception("database is locked"))
            session.commit = failing_commit
            yield session

    app.dependency_overrides[get_db] = override_get_db
    try:
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.post(
                "/rbac/roles",
                headers=auth("admin-token"),
                json={"name": "auditor", "display_name": "Auditor"},
            )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert "auditor" not in registry
    async with session_factory() as db:
        assert (await db.execute(select(Role).where(Role.name == "auditor"))).scalar_one_or_none() is None
