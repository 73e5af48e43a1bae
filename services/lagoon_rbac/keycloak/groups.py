"""Keycloak group operations.

Each Lagoon group carries one child group per role, named
`<group>-<role>`. A user holds a role in a group by being a member of the
matching role subgroup. Memberships are only ever added here; roles a
user already holds are never removed.
"""

from dataclasses import dataclass, field
from typing import Any

from lagoon_rbac.errors import KeycloakError, MembershipAddError, NotFoundError
from lagoon_rbac.keycloak.client import KeycloakAdminClient
from lagoon_rbac.keycloak.users import User, UserService
from lagoon_rbac.logging_config import get_logger

logger = get_logger(__name__)

# Ordered from least to most privileged
GROUP_ROLES = ("guest", "reporter", "developer", "maintainer", "owner")

ROLE_SUBGROUP_TYPE = "role-subgroup"


@dataclass
class Group:
    """Keycloak group (subset of the GroupRepresentation)."""

    id: str
    name: str
    attributes: dict[str, list[str]] = field(default_factory=dict)
    path: str | None = None

    @classmethod
    def from_representation(cls, data: dict[str, Any]) -> "Group":
        return cls(
            id=data["id"],
            name=data["name"],
            attributes=data.get("attributes") or {},
            path=data.get("path"),
        )

    def to_representation(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "attributes": self.attributes}


def role_subgroup_name(group_name: str, role: str) -> str:
    return f"{group_name}-{role}"


# ── Lookup result ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Found:
    group: Group


@dataclass(frozen=True)
class NotFound:
    name: str


@dataclass(frozen=True)
class Failed:
    name: str
    reason: str


GroupLookup = Found | NotFound | Failed


class GroupService:
    """Group CRUD and role membership in one realm."""

    def __init__(self, client: KeycloakAdminClient, users: UserService | None = None) -> None:
        self._client = client
        self._users = users or UserService(client)

    async def lookup_by_name(self, name: str) -> GroupLookup:
        """Find a top-level group by exact name.

        Never raises for Keycloak errors; they come back as Failed.
        """
        try:
            candidates = await self._client.get_json(
                "/groups",
                params={"search": name, "exact": "true", "briefRepresentation": "false"},
            )
            # Servers without `exact` support return substring matches
            match = next((g for g in candidates if g.get("name") == name), None)
            if match is None:
                return NotFound(name)
            return Found(await self.load_by_id(match["id"]))
        except NotFoundError:
            return NotFound(name)
        except KeycloakError as e:
            return Failed(name, str(e))

    async def load_by_id(self, group_id: str) -> Group:
        data = await self._client.get_json(f"/groups/{group_id}")
        return Group.from_representation(data)

    async def create(self, name: str, attributes: dict[str, list[str]]) -> Group:
        group_id = await self._client.create("/groups", {"name": name, "attributes": attributes})
        logger.info("Created group", group=name, group_id=group_id)
        return await self.load_by_id(group_id)

    async def update(self, group: Group) -> Group:
        """Replace the group's representation and return the stored result."""
        await self._client.request("PUT", f"/groups/{group.id}", json=group.to_representation())
        return await self.load_by_id(group.id)

    async def role_subgroups(self, group: Group) -> dict[str, Group]:
        """Existing role subgroups of a group, keyed by role."""
        children = await self._client.get_json(f"/groups/{group.id}/children")
        by_name = {c["name"]: Group.from_representation(c) for c in children}
        return {
            role: by_name[role_subgroup_name(group.name, role)]
            for role in GROUP_ROLES
            if role_subgroup_name(group.name, role) in by_name
        }

    async def ensure_role_subgroups(self, group: Group) -> dict[str, Group]:
        """Create any missing role subgroups. Returns all of them keyed by role."""
        subgroups = await self.role_subgroups(group)
        for role in GROUP_ROLES:
            if role in subgroups:
                continue
            name = role_subgroup_name(group.name, role)
            subgroup_id = await self._client.create(
                f"/groups/{group.id}/children",
                {
                    "name": name,
                    "attributes": {"type": [ROLE_SUBGROUP_TYPE], "lagoon-role": [role]},
                },
            )
            subgroups[role] = await self.load_by_id(subgroup_id)
            logger.debug("Created role subgroup", group=group.name, subgroup=name)
        return subgroups

    async def add_user_to_group(self, user: User, group: Group, role: str) -> bool:
        """Give the user `role` in the group.

        Returns False when the user already held that role. Other roles the
        user holds in the group are kept. Raises MembershipAddError.
        """
        if role not in GROUP_ROLES:
            raise MembershipAddError(f"Unknown role {role!r}")

        try:
            subgroups = await self.role_subgroups(group)
            target = subgroups.get(role)
            if target is None:
                raise MembershipAddError(
                    f"Group {group.name} has no {role_subgroup_name(group.name, role)} subgroup"
                )

            current = {g["id"] for g in await self._users.list_groups(user, search=group.name)}
            if target.id in current:
                logger.debug(
                    "User already has role in group",
                    user=user.username,
                    group=group.name,
                    role=role,
                )
                return False

            await self._client.request("PUT", f"/users/{user.id}/groups/{target.id}")
        except KeycloakError as e:
            raise MembershipAddError(str(e)) from e

        logger.info("Added user to group", user=user.username, group=group.name, role=role)
        return True
