"""Project group upsert."""

from lagoon_rbac.db.models import ProjectRecord
from lagoon_rbac.errors import GroupOperationError, KeycloakError
from lagoon_rbac.keycloak.groups import Failed, Found, Group, GroupService, NotFound
from lagoon_rbac.logging_config import get_logger

logger = get_logger(__name__)

PROJECT_GROUP_TYPE = "project-default-group"
PROJECT_LINK_ATTRIBUTE = "lagoon-projects"


def project_group_name(project_name: str) -> str:
    return f"project-{project_name}"


def project_group_attributes(project: ProjectRecord) -> dict[str, list[str]]:
    return {
        "type": [PROJECT_GROUP_TYPE],
        PROJECT_LINK_ATTRIBUTE: [str(project.id)],
    }


def merge_attributes(
    existing: dict[str, list[str]], updates: dict[str, list[str]]
) -> dict[str, list[str]]:
    """Overlay `updates` on `existing`; keys only in `existing` are kept."""
    return {**existing, **updates}


class GroupResolver:
    """Ensures the default group of a project exists with current attributes."""

    def __init__(self, groups: GroupService) -> None:
        self._groups = groups

    async def upsert_project_group(self, project: ProjectRecord) -> Group:
        """Create or update `project-<name>`. Raises GroupOperationError."""
        name = project_group_name(project.name)
        attributes = project_group_attributes(project)

        lookup = await self._groups.lookup_by_name(name)
        try:
            if isinstance(lookup, Found):
                existing = lookup.group
                group = await self._groups.update(
                    Group(
                        id=existing.id,
                        name=existing.name,
                        attributes=merge_attributes(existing.attributes, attributes),
                    )
                )
                logger.debug("Updated group", group=name, group_id=group.id)
            elif isinstance(lookup, NotFound):
                group = await self._groups.create(name, attributes)
            elif isinstance(lookup, Failed):
                raise GroupOperationError(f"Could not load group {name}: {lookup.reason}")
            else:
                raise GroupOperationError(f"Unexpected lookup result for {name}: {lookup!r}")

            await self._groups.ensure_role_subgroups(group)
        except KeycloakError as e:
            raise GroupOperationError(f"Could not upsert group {name}: {e}") from e

        return group
