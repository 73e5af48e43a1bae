"""Pytest configuration and fixtures."""

import json
import uuid
from collections.abc import AsyncGenerator
from typing import Any

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from lagoon_rbac.db.models import Base
from lagoon_rbac.db.session import create_session_factory
from lagoon_rbac.keycloak.client import AdminCredentials, KeycloakAdminClient

KEYCLOAK_URL = "http://keycloak.test/auth"
ADMIN_PASSWORD = "admin-secret"


class FakeKeycloak:
    """In-memory Keycloak admin API served through httpx.MockTransport.

    Implements the subset of endpoints the migration uses, with Keycloak's
    status codes (201 + Location on create, 204 on update, 404, 409).
    """

    def __init__(self) -> None:
        self.groups: dict[str, dict[str, Any]] = {}
        self.users: dict[str, dict[str, Any]] = {}
        self.memberships: dict[str, set[str]] = {}
        self.valid_tokens: set[str] = set()
        self.token_requests: list[str] = []
        self.requests: list[tuple[str, str]] = []
        self._failures: list[tuple[str, str, int]] = []

    # ── Test helpers ─────────────────────────────────────────────────────

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def fail(self, method: str, path_contains: str, status: int = 500) -> None:
        """Make matching admin requests fail with `status`."""
        self._failures.append((method, path_contains, status))

    def clear_failures(self) -> None:
        self._failures.clear()

    def expire_tokens(self) -> None:
        self.valid_tokens.clear()

    def add_group(
        self, name: str, attributes: dict[str, list[str]] | None = None, parent: str | None = None
    ) -> dict[str, Any]:
        group_id = str(uuid.uuid4())
        parent_path = self.groups[parent]["path"] if parent else ""
        group = {
            "id": group_id,
            "name": name,
            "path": f"{parent_path}/{name}",
            "attributes": attributes or {},
            "parent": parent,
        }
        self.groups[group_id] = group
        return group

    def add_user(self, username: str, email: str | None = None, **extra: Any) -> dict[str, Any]:
        user_id = str(uuid.uuid4())
        user = {
            "id": user_id,
            "username": username.lower(),
            "email": email or username,
            "enabled": True,
            "attributes": {},
            **extra,
        }
        self.users[user_id] = user
        self.memberships[user_id] = set()
        return user

    def group_by_name(self, name: str) -> dict[str, Any] | None:
        return next((g for g in self.groups.values() if g["name"] == name), None)

    def top_level_groups(self, name: str) -> list[dict[str, Any]]:
        return [g for g in self.groups.values() if g["name"] == name and g["parent"] is None]

    def user_by_username(self, username: str) -> dict[str, Any] | None:
        return next(
            (u for u in self.users.values() if u["username"] == username.lower()), None
        )

    def users_named(self, username: str) -> list[dict[str, Any]]:
        return [u for u in self.users.values() if u["username"] == username.lower()]

    def roles_of(self, username: str, group_name: str) -> set[str]:
        """Roles a user holds in a project group, derived from subgroup membership."""
        user = self.user_by_username(username)
        if user is None:
            return set()
        roles = set()
        for group_id in self.memberships[user["id"]]:
            group = self.groups[group_id]
            prefix = f"{group_name}-"
            if group["name"].startswith(prefix):
                roles.add(group["name"][len(prefix) :])
        return roles

    def children_of(self, group_id: str) -> list[dict[str, Any]]:
        return [g for g in self.groups.values() if g["parent"] == group_id]

    # ── Request handling ─────────────────────────────────────────────────

    def _representation(self, group: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in group.items() if k != "parent"}

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append((request.method, path))

        if path.endswith("/protocol/openid-connect/token"):
            return self._token(request)

        realm_prefix = "/auth/admin/realms/"
        if not path.startswith(realm_prefix):
            return httpx.Response(404)

        auth = request.headers.get("Authorization", "")
        if auth.removeprefix("Bearer ") not in self.valid_tokens:
            return httpx.Response(401, json={"error": "HTTP 401 Unauthorized"})

        relative = "/" + path[len(realm_prefix) :].split("/", 1)[1]
        for method, fragment, status in self._failures:
            if request.method == method and fragment in relative:
                return httpx.Response(status, json={"error": "injected failure"})

        segments = relative.strip("/").split("/")
        if segments[0] == "groups":
            return self._groups(request, segments[1:])
        if segments[0] == "users":
            return self._users(request, segments[1:])
        return httpx.Response(404)

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = dict(httpx.QueryParams(request.content.decode()))
        self.token_requests.append(request.url.path)
        if form.get("username") != "admin" or form.get("password") != ADMIN_PASSWORD:
            return httpx.Response(401, json={"error": "invalid_grant"})
        token = secrets_token()
        self.valid_tokens.add(token)
        return httpx.Response(200, json={"access_token": token, "expires_in": 60})

    def _created(self, request: httpx.Request, entity_id: str) -> httpx.Response:
        base = str(request.url).split("?")[0].rstrip("/")
        if base.endswith("/children"):
            base = base.rsplit("/", 2)[0]
        return httpx.Response(201, headers={"Location": f"{base}/{entity_id}"})

    def _groups(self, request: httpx.Request, segments: list[str]) -> httpx.Response:
        params = request.url.params
        if not segments:
            if request.method == "GET":
                search = params.get("search", "").lower()
                exact = params.get("exact") == "true"
                matches = [
                    self._representation(g)
                    for g in self.groups.values()
                    if g["parent"] is None
                    and (g["name"].lower() == search if exact else search in g["name"].lower())
                ]
                return httpx.Response(200, json=matches)
            if request.method == "POST":
                body = json.loads(request.content)
                if self.top_level_groups(body["name"]):
                    return httpx.Response(409, json={"error": "Top level group exists"})
                group = self.add_group(body["name"], body.get("attributes"))
                return self._created(request, group["id"])
            return httpx.Response(405)

        group = self.groups.get(segments[0])
        if group is None:
            return httpx.Response(404, json={"error": "Could not find group by id"})

        if len(segments) == 1:
            if request.method == "GET":
                return httpx.Response(200, json=self._representation(group))
            if request.method == "PUT":
                body = json.loads(request.content)
                group["name"] = body.get("name", group["name"])
                group["attributes"] = body.get("attributes", {})
                return httpx.Response(204)
            return httpx.Response(405)

        if segments[1] == "children":
            if request.method == "GET":
                return httpx.Response(
                    200, json=[self._representation(c) for c in self.children_of(group["id"])]
                )
            if request.method == "POST":
                body = json.loads(request.content)
                if any(c["name"] == body["name"] for c in self.children_of(group["id"])):
                    return httpx.Response(409, json={"error": "Sibling group exists"})
                child = self.add_group(body["name"], body.get("attributes"), parent=group["id"])
                return self._created(request, child["id"])
        return httpx.Response(404)

    def _users(self, request: httpx.Request, segments: list[str]) -> httpx.Response:
        params = request.url.params
        if not segments:
            if request.method == "GET":
                username = params.get("username", "").lower()
                matches = [u for u in self.users.values() if u["username"] == username]
                return httpx.Response(200, json=matches)
            if request.method == "POST":
                body = json.loads(request.content)
                if self.user_by_username(body["username"]):
                    return httpx.Response(
                        409, json={"errorMessage": "User exists with same username"}
                    )
                user = self.add_user(
                    body["username"], body.get("email"), attributes=body.get("attributes", {})
                )
                return self._created(request, user["id"])
            return httpx.Response(405)

        user = self.users.get(segments[0])
        if user is None:
            return httpx.Response(404, json={"error": "User not found"})

        if len(segments) == 1:
            if request.method == "GET":
                return httpx.Response(200, json=user)
            return httpx.Response(405)

        if segments[1] == "groups":
            if len(segments) == 2 and request.method == "GET":
                search = params.get("search", "").lower()
                groups = sorted(
                    (
                        self._representation(self.groups[gid])
                        for gid in self.memberships[user["id"]]
                        if search in self.groups[gid]["name"].lower()
                    ),
                    key=lambda g: g["name"],
                )
                first = int(params.get("first", 0))
                size = int(params.get("max", 100))
                return httpx.Response(200, json=groups[first : first + size])
            if len(segments) == 3:
                if segments[2] not in self.groups:
                    return httpx.Response(404, json={"error": "Group not found"})
                if request.method == "PUT":
                    self.memberships[user["id"]].add(segments[2])
                    return httpx.Response(204)
                if request.method == "DELETE":
                    self.memberships[user["id"]].discard(segments[2])
                    return httpx.Response(204)
        return httpx.Response(404)


def secrets_token() -> str:
    return uuid.uuid4().hex


@pytest.fixture
def fake_keycloak() -> FakeKeycloak:
    return FakeKeycloak()


@pytest.fixture
async def keycloak_client(fake_keycloak: FakeKeycloak) -> AsyncGenerator[KeycloakAdminClient]:
    """Client authenticated in master and bound to the lagoon realm."""
    admin = KeycloakAdminClient.connect(
        KEYCLOAK_URL, realm="master", transport=fake_keycloak.transport()
    )
    await admin.authenticate(AdminCredentials(username="admin", password=ADMIN_PASSWORD))
    yield admin.for_realm("lagoon")
    await admin.aclose()


@pytest.fixture
async def async_engine(tmp_path):
    """Create async engine on a throwaway SQLite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_session(async_engine) -> AsyncGenerator[AsyncSession]:
    """Create database session for testing."""
    async with create_session_factory(async_engine)() as session:
        yield session
