"""Keycloak user operations."""

from dataclasses import dataclass, field
from typing import Any

from lagoon_rbac.errors import NotFoundError
from lagoon_rbac.keycloak.client import KeycloakAdminClient

GROUPS_PAGE_SIZE = 100


@dataclass
class User:
    """Keycloak user (subset of the UserRepresentation)."""

    id: str
    username: str
    email: str | None = None
    attributes: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def from_representation(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=data["id"],
            username=data["username"],
            email=data.get("email"),
            attributes=data.get("attributes") or {},
        )


class UserService:
    """User lookups and creation in one realm."""

    def __init__(self, client: KeycloakAdminClient) -> None:
        self._client = client

    async def load_by_username(self, username: str) -> User:
        """Load a user by exact username. Raises NotFoundError."""
        users = await self._client.get_json(
            "/users", params={"username": username, "exact": "true"}
        )
        # Keycloak lowercases usernames; older servers ignore `exact`
        for data in users:
            if data.get("username", "").lower() == username.lower():
                return User.from_representation(data)
        raise NotFoundError(f"User {username} not found")

    async def load_by_id(self, user_id: str) -> User:
        data = await self._client.get_json(f"/users/{user_id}")
        return User.from_representation(data)

    async def create(self, username: str, email: str, comment: str | None = None) -> User:
        representation: dict[str, Any] = {
            "username": username,
            "email": email,
            "enabled": True,
            "attributes": {"comment": [comment]} if comment else {},
        }
        user_id = await self._client.create("/users", representation)
        return await self.load_by_id(user_id)

    async def list_groups(
        self,
        user: User,
        search: str | None = None,
        page_size: int = GROUPS_PAGE_SIZE,
    ) -> list[dict[str, Any]]:
        """Groups the user is a direct member of, optionally filtered by name.

        Keycloak pages this endpoint (100 entries by default), so all pages
        are fetched.
        """
        params: dict[str, Any] = {"briefRepresentation": "true", "max": page_size}
        if search:
            params["search"] = search

        groups: list[dict[str, Any]] = []
        first = 0
        while True:
            page = await self._client.get_json(
                f"/users/{user.id}/groups", params={**params, "first": first}
            )
            groups.extend(page)
            if len(page) < page_size:
                return groups
            first += page_size
