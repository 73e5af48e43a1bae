"""Migration of legacy project ACLs into Keycloak groups.

For every project row, in order:

1. Upsert the `project-<name>` group (skip the project on failure)
2. Add every legacy project user to the group as owner
3. Resolve the project keypair (skip the project if the stored key is bad)
4. Write a freshly generated private key back to the project
5. Find or create the default user owning the project public key
6. Add the default user to the group as guest

Projects are processed one at a time. Failures are logged with context and
recorded on the project's outcome; they never stop the run. Re-running is
safe: every step is an upsert or a no-op when already done.
"""

from dataclasses import dataclass, field

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lagoon_rbac.db.models import Customer, LegacyUser, Project, ProjectRecord, ProjectUser
from lagoon_rbac.errors import (
    GroupOperationError,
    IdentityCreationError,
    KeycloakError,
    KeyMaterialError,
    MembershipAddError,
)
from lagoon_rbac.keycloak.client import KeycloakAdminClient
from lagoon_rbac.keycloak.groups import GroupService
from lagoon_rbac.keycloak.users import UserService
from lagoon_rbac.logging_config import get_logger
from lagoon_rbac.services.group_resolver import GroupResolver
from lagoon_rbac.services.identity_binder import IdentityBinder
from lagoon_rbac.services.key_material import resolve_key_pair

logger = get_logger(__name__)

# Per-project progress, in order
STATE_START = "start"
STATE_GROUP_RESOLVED = "group_resolved"
STATE_USERS_ADDED = "users_added"
STATE_KEY_RESOLVED = "key_resolved"
STATE_IDENTITY_RESOLVED = "identity_resolved"
STATE_GUEST_ADDED = "guest_added"
STATE_DONE = "done"

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"
STATUS_SKIPPED = "skipped"

OWNER_ROLE = "owner"
DEFAULT_USER_ROLE = "guest"


@dataclass
class ProjectOutcome:
    """What happened to one project during the run."""

    project_id: int
    project_name: str
    state: str = STATE_START
    skipped: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        if self.skipped:
            return STATUS_SKIPPED
        if self.errors:
            return STATUS_ERROR
        return STATUS_SUCCESS


@dataclass
class MigrationReport:
    outcomes: list[ProjectOutcome] = field(default_factory=list)

    def _with_status(self, status: str) -> list[ProjectOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def succeeded(self) -> list[ProjectOutcome]:
        return self._with_status(STATUS_SUCCESS)

    @property
    def failed(self) -> list[ProjectOutcome]:
        return self._with_status(STATUS_ERROR)

    @property
    def skipped(self) -> list[ProjectOutcome]:
        return self._with_status(STATUS_SKIPPED)

    def get(self, project_name: str) -> ProjectOutcome | None:
        return next((o for o in self.outcomes if o.project_name == project_name), None)


class Reconciler:
    """Runs the migration over all projects with one db session and one Keycloak client."""

    def __init__(self, db: AsyncSession, keycloak: KeycloakAdminClient) -> None:
        self._db = db
        self._users = UserService(keycloak)
        self._groups = GroupService(keycloak, self._users)
        self._group_resolver = GroupResolver(self._groups)
        self._identity_binder = IdentityBinder(db, self._users)

    async def run(self) -> MigrationReport:
        """Migrate every project. Never raises for per-project failures."""
        backfilled = await self.backfill_private_keys()
        logger.info("Copied customer private keys to projects", count=backfilled)

        report = MigrationReport()
        for project in await self.load_projects():
            with structlog.contextvars.bound_contextvars(project=project.name):
                outcome = ProjectOutcome(project_id=project.id, project_name=project.name)
                try:
                    await self.reconcile_project(project, outcome)
                except Exception as e:
                    logger.exception("Unexpected error migrating project", error=str(e))
                    await self._db.rollback()
                    outcome.errors.append(f"unexpected error: {e}")
                report.outcomes.append(outcome)

        logger.info(
            "Migration completed",
            projects=len(report.outcomes),
            succeeded=len(report.succeeded),
            failed=len(report.failed),
            skipped=len(report.skipped),
        )
        return report

    async def backfill_private_keys(self) -> int:
        """Copy the customer private key onto projects that have none."""
        customer_key = (
            select(Customer.private_key)
            .where(Customer.id == Project.customer)
            .scalar_subquery()
        )
        result = await self._db.execute(
            update(Project)
            .where(Project.private_key.is_(None))
            .where(Project.customer.is_not(None))
            .values(private_key=customer_key)
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()
        return result.rowcount or 0

    async def load_projects(self) -> list[ProjectRecord]:
        result = await self._db.execute(
            select(Project.id, Project.name, Project.private_key).order_by(Project.id)
        )
        return [
            ProjectRecord(id=row.id, name=row.name, private_key=row.private_key)
            for row in result
        ]

    async def project_user_emails(self, project: ProjectRecord) -> list[str | None]:
        result = await self._db.execute(
            select(LegacyUser.email)
            .select_from(ProjectUser)
            .outerjoin(LegacyUser, ProjectUser.usid == LegacyUser.id)
            .where(ProjectUser.pid == project.id)
            .order_by(ProjectUser.usid)
        )
        return list(result.scalars().all())

    async def save_private_key(self, project: ProjectRecord, private_key: str) -> None:
        await self._db.execute(
            update(Project)
            .where(Project.id == project.id)
            .values(private_key=private_key)
            .execution_options(synchronize_session=False)
        )
        await self._db.commit()

    async def reconcile_project(self, project: ProjectRecord, outcome: ProjectOutcome) -> None:
        logger.debug("Processing project")

        try:
            group = await self._group_resolver.upsert_project_group(project)
        except GroupOperationError as e:
            logger.error("Could not add or update project group", error=str(e))
            outcome.errors.append(str(e))
            outcome.skipped = True
            return
        outcome.state = STATE_GROUP_RESOLVED

        for email in await self.project_user_emails(project):
            if not email:
                message = "project_user row references a missing user"
                logger.error("Could not add user to group", group=group.name, error=message)
                outcome.errors.append(message)
                continue
            try:
                user = await self._users.load_by_username(email)
                await self._groups.add_user_to_group(user, group, OWNER_ROLE)
            except (KeycloakError, MembershipAddError) as e:
                logger.error(
                    "Could not add user to group", user=email, group=group.name, error=str(e)
                )
                outcome.errors.append(f"{email}: {e}")
        outcome.state = STATE_USERS_ADDED

        try:
            resolved = resolve_key_pair(project.private_key)
        except KeyMaterialError as e:
            logger.error("There was an error with the project private key", error=str(e))
            logger.error("Skipping default user with associated project public key")
            outcome.errors.append(str(e))
            outcome.skipped = True
            return
        outcome.state = STATE_KEY_RESOLVED

        if resolved.generated:
            try:
                await self.save_private_key(project, resolved.key_pair.private)
            except SQLAlchemyError as e:
                await self._db.rollback()
                logger.error("Could not save generated private key", error=str(e))
                outcome.errors.append(f"could not save private key: {e}")
                return
            logger.info("Generated new project private key")

        try:
            default_user = await self._identity_binder.resolve_default_identity(
                project, resolved.key_pair.public
            )
        except IdentityCreationError as e:
            logger.error("Could not create default project user", error=str(e))
            outcome.errors.append(str(e))
            return
        outcome.state = STATE_IDENTITY_RESOLVED

        try:
            await self._groups.add_user_to_group(default_user, group, DEFAULT_USER_ROLE)
            outcome.state = STATE_GUEST_ADDED
        except MembershipAddError as e:
            logger.error(
                "Could not link default user to project group",
                user=default_user.username,
                group=group.name,
                error=str(e),
            )
            outcome.errors.append(str(e))
            return

        outcome.state = STATE_DONE
