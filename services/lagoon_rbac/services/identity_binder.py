"""Default user resolution.

Every project gets a `default-user@<project>` Keycloak user that owns the
project's public key. Users are deduplicated by key fingerprint: if any user
already owns a key with the same fingerprint, that user is reused, even when
it was created for a differently named project.

A newly provisioned user counts as resolved only once its key link has been
committed. If a previous run created the Keycloak user but died before
linking the key, the existing user is found by username and linked now.
"""

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lagoon_rbac.db.models import ProjectRecord
from lagoon_rbac.errors import IdentityCreationError, KeycloakError, KeyMaterialError, NotFoundError
from lagoon_rbac.keycloak.users import User, UserService
from lagoon_rbac.logging_config import get_logger
from lagoon_rbac.services import ssh_key_store
from lagoon_rbac.services.key_material import get_ssh_key_fingerprint, split_public_key

logger = get_logger(__name__)

MIGRATION_KEY_NAME = "auto-add via migration"


def default_user_name(project_name: str) -> str:
    return f"default-user@{project_name}"


class IdentityBinder:
    """Finds or provisions the default user bound to a project key."""

    def __init__(self, db: AsyncSession, users: UserService) -> None:
        self._db = db
        self._users = users

    async def resolve_default_identity(self, project: ProjectRecord, public_key_text: str) -> User:
        """Return the user owning `public_key_text`, creating one if needed.

        Raises IdentityCreationError.
        """
        try:
            fingerprint = get_ssh_key_fingerprint(public_key_text)
            key_type, key_value = split_public_key(public_key_text)
        except KeyMaterialError as e:
            raise IdentityCreationError(f"Invalid public key for {project.name}: {e}") from e

        user_ids = await ssh_key_store.select_user_ids_by_fingerprint(self._db, fingerprint)
        for user_id in user_ids:
            try:
                user = await self._users.load_by_id(user_id)
            except NotFoundError:
                logger.warning(
                    "Key is linked to a missing Keycloak user",
                    fingerprint=fingerprint,
                    user_id=user_id,
                )
                continue
            except KeycloakError as e:
                raise IdentityCreationError(f"Could not load user {user_id}: {e}") from e
            logger.debug("Reusing user for key", user=user.username, fingerprint=fingerprint)
            return user

        return await self._provision(project, fingerprint, key_type, key_value)

    async def _provision(
        self,
        project: ProjectRecord,
        fingerprint: str,
        key_type: str,
        key_value: str,
    ) -> User:
        username = default_user_name(project.name)
        try:
            try:
                user = await self._users.load_by_username(username)
                logger.info("Found default user without linked key", user=username)
            except NotFoundError:
                user = await self._users.create(
                    username=username,
                    email=username,
                    comment=f"autogenerated user for project {project.name}",
                )
                logger.info("Created default user", user=username, user_id=user.id)
        except KeycloakError as e:
            raise IdentityCreationError(f"Could not create {username}: {e}") from e

        try:
            key = await ssh_key_store.select_key_by_fingerprint(self._db, fingerprint)
            if key is None:
                key = await ssh_key_store.insert_ssh_key(
                    self._db,
                    name=MIGRATION_KEY_NAME,
                    key_type=key_type,
                    key_value=key_value,
                    key_fingerprint=fingerprint,
                )
            await ssh_key_store.add_ssh_key_to_user(self._db, key.id, user.id)
            await self._db.commit()
        except SQLAlchemyError as e:
            await self._db.rollback()
            raise IdentityCreationError(f"Could not link key to {username}: {e}") from e

        logger.info("Linked project key to default user", user=username, fingerprint=fingerprint)
        return user
