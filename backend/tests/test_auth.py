import asyncio
import threading
import time

import pytest

from tutorhub.exceptions import AuthProviderError
from tutorhub.services.auth_provider import AuthResolver
from tutorhub.utils.security import (
    ACCESS_TOKEN_COOKIE,
    AuthenticatedUser,
    Capability,
    UserRole,
    verify_center_access,
)

from conftest import make_user


class SlowProvider:
    """Blocks each call until `delay` has passed"""

    def __init__(self, delay, user=None, error=None):
        self.delay = delay
        self.user = user if user is not None else {"id": "user-1", "email": "a@example.com"}
        self.error = error
        self.calls = 0
        self._lock = threading.Lock()

    def get_user(self, access_token):
        with self._lock:
            self.calls += 1
        time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.user


def staff(role, center_id="center-1"):
    return AuthenticatedUser(id="u1", email="u1@example.com", role=role, center_id=center_id, is_active=True)


class TestAuthResolver:

    def test_concurrent_resolutions_share_one_call(self):
        provider = SlowProvider(delay=0.2)
        resolver = AuthResolver(provider, timeout=2)

        async def run():
            return await asyncio.gather(*[resolver.resolve("same-token") for _ in range(5)])

        results = asyncio.run(run())

        assert provider.calls == 1
        assert all(result["id"] == "user-1" for result in results)
        assert resolver.in_flight() == 0

    def test_different_tokens_resolve_separately(self):
        provider = SlowProvider(delay=0.05)
        resolver = AuthResolver(provider, timeout=2)

        async def run():
            return await asyncio.gather(resolver.resolve("token-a"), resolver.resolve("token-b"))

        asyncio.run(run())

        assert provider.calls == 2

    def test_sequential_resolutions_do_not_reuse_finished_calls(self):
        provider = SlowProvider(delay=0)
        resolver = AuthResolver(provider, timeout=2)

        async def run():
            await resolver.resolve("token")
            await resolver.resolve("token")

        asyncio.run(run())

        assert provider.calls == 2

    def test_timeout_is_an_auth_failure_and_entry_is_dropped(self):
        provider = SlowProvider(delay=0.5)
        resolver = AuthResolver(provider, timeout=0.05)

        async def run():
            result = await resolver.resolve("token")
            return result, resolver.in_flight()

        result, in_flight = asyncio.run(run())

        assert result is None
        assert in_flight == 0

    def test_provider_error_propagates_to_every_waiter(self):
        provider = SlowProvider(delay=0.1, error=AuthProviderError("down"))
        resolver = AuthResolver(provider, timeout=2)

        async def run():
            return await asyncio.gather(
                resolver.resolve("token"), resolver.resolve("token"), return_exceptions=True
            )

        results = asyncio.run(run())

        assert provider.calls == 1
        assert all(isinstance(result, AuthProviderError) for result in results)
        assert resolver.in_flight() == 0

    def test_rejected_token(self):
        provider = SlowProvider(delay=0)
        provider.user = None
        resolver = AuthResolver(provider, timeout=2)

        assert asyncio.run(resolver.resolve("token")) is None


class TestCapabilities:

    @pytest.mark.parametrize("capability", list(Capability))
    def test_admins_have_every_capability(self, capability):
        assert staff(UserRole.CENTER_ADMIN).can(capability)
        assert staff(UserRole.SUPER_ADMIN, center_id=None).can(capability)

    def test_center_staff(self):
        user = staff(UserRole.CENTER_STAFF)

        assert user.can(Capability.VIEW_NOTIFICATIONS)
        assert user.can(Capability.MANAGE_STUDENTS)
        assert not user.can(Capability.MANAGE_PORTAL_TOKENS)
        assert not user.can(Capability.SEND_NOTIFICATIONS)
        assert not user.can(Capability.REVERSE_PAYMENTS)
        assert not user.can(Capability.MANAGE_SUBSCRIPTION)

    def test_center_access(self):
        assert verify_center_access(staff(UserRole.CENTER_ADMIN), "center-1")
        assert not verify_center_access(staff(UserRole.CENTER_ADMIN), "center-2")
        assert not verify_center_access(staff(UserRole.CENTER_STAFF, center_id=None), None)
        assert verify_center_access(staff(UserRole.SUPER_ADMIN, center_id=None), "center-2")


class TestCurrentUser:

    def test_bearer_token(self, client, login, admin_user, center):
        response = client.get("/api/auth/me", headers=login(admin_user))

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == admin_user.id
        assert body["role"] == "center_admin"
        assert body["centerId"] == center.id

    def test_session_cookie(self, client, login, admin_user):
        token = login(admin_user)["Authorization"].split(" ", 1)[1]
        client.cookies.set(ACCESS_TOKEN_COOKIE, token)

        response = client.get("/api/auth/me")

        assert response.status_code == 200
        assert response.json()["email"] == admin_user.email

    def test_missing_token(self, client):
        response = client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.json()["detail"] == "Unauthorized"

    def test_unknown_token(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_provider_user_without_profile(self, client, auth_provider):
        auth_provider.users["orphan"] = {"id": "no-such-user", "email": "x@example.com"}

        response = client.get("/api/auth/me", headers={"Authorization": "Bearer orphan"})

        assert response.status_code == 401
        assert response.json()["detail"] == "User profile not found"

    def test_deactivated_user(self, client, login, db, center):
        user = make_user(db, center.id, is_active=False)

        response = client.get("/api/auth/me", headers=login(user))

        assert response.status_code == 401
        assert response.json()["detail"] == "User account is deactivated"

        response = client.get("/api/auth/me", headers=login(user))

        assert response.status_code == 403

    def test_provider_outage(self, client, login, admin_user, auth_provider):
        headers = login(admin_user)
        auth_provider.error = AuthProviderError("Auth provider unreachable")

        response = client.get("/api/auth/me", headers=headers)

        assert response.status_code == 503
        assert response.json()["detail"] == "Authentication service unavailable"

    def test_staff_cannot_issue_portal_tokens(self, client, login, staff_user, student):
        response = client.post(
            "/api/portal/generate-token",
            json={"entityType": "student", "entityId": student.id},
            headers=login(staff_user)
        )

        assert response.status_code == 403
        assert response.json()["detail"] == "Insufficient permissions"
