"""
Tests for route-level role checks and credential handling.
"""

import pytest

from parcel_backend.app.core.exceptions import InsufficientPermissionsError
from parcel_backend.app.core.guards import authorize_role
from parcel_backend.app.core.jwt import create_access_token
from parcel_backend.app.models.enums import UserRole


def test_allowed_role_passes():
    assert authorize_role("ADMIN", [UserRole.ADMIN]) == UserRole.ADMIN
    assert authorize_role("USER", [UserRole.USER, UserRole.ADMIN]) == UserRole.USER


def test_disallowed_role_is_forbidden():
    with pytest.raises(InsufficientPermissionsError) as exc:
        authorize_role("USER", [UserRole.ADMIN])
    assert exc.value.status_code == 403
    assert exc.value.message == "You are not permitted to view this route!"


def test_unknown_or_missing_role_is_forbidden():
    with pytest.raises(InsufficientPermissionsError):
        authorize_role("SUPERUSER", list(UserRole))
    with pytest.raises(InsufficientPermissionsError):
        authorize_role(None, list(UserRole))


@pytest.mark.asyncio
async def test_missing_token_is_unauthorized(client):
    response = await client.get("/api/v1/parcels/me")
    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "No token received"
    assert body["error_code"] == "ERR_AUTH_001"


@pytest.mark.asyncio
async def test_garbage_token_is_unauthorized(client):
    response = await client.get("/api/v1/parcels/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_refresh_token_cannot_be_used_as_access_token(client, sender):
    login = await client.post("/api/v1/auth/login", json={"email": sender["email"], "password": "Secret@123"})
    refresh_token = login.json()["data"]["refresh_token"]
    client.cookies.clear()

    response = await client.get("/api/v1/parcels/me", headers={"Authorization": f"Bearer {refresh_token}"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_bare_authorization_header_is_accepted(client, sender):
    response = await client.get("/api/v1/parcels/me", headers={"Authorization": sender["token"]})
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_access_token_cookie_is_accepted(client, sender):
    client.cookies.set("accessToken", sender["token"])
    response = await client.get("/api/v1/user/me")
    client.cookies.clear()
    assert response.status_code == 200
    assert response.json()["data"]["email"] == sender["email"]


@pytest.mark.asyncio
async def test_token_for_unknown_user_is_unauthorized(client):
    token = create_access_token({"user_id": 9999, "email": "ghost@mail.com", "role": "ADMIN"})
    response = await client.get("/api/v1/user/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["message"] == "User doesn't exist"


@pytest.mark.asyncio
async def test_role_is_read_from_the_database(client, sender):
    # A forged role claim does not grant admin routes
    token = create_access_token({"user_id": sender["id"], "email": sender["email"], "role": "ADMIN"})
    response = await client.get("/api/v1/parcels/all", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


@pytest.mark.asyncio
@pytest.mark.parametrize("path,role_fixture", [
    ("/api/v1/parcels/all", "sender"),
    ("/api/v1/parcels/all", "delivery_man"),
    ("/api/v1/parcels/my-deliveries", "sender"),
    ("/api/v1/parcels/me", "delivery_man"),
    ("/api/v1/parcels/incoming", "admin"),
    ("/api/v1/user/all", "delivery_man"),
])
async def test_route_roles(client, admin, sender, delivery_man, path, role_fixture):
    caller = {"admin": admin, "sender": sender, "delivery_man": delivery_man}[role_fixture]
    response = await client.get(path, headers=caller["headers"])
    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_PERM_001"
