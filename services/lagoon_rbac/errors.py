"""Exception taxonomy for the migration.

Every per-project failure is one of these; the reconciler catches them at
the project (or per-user) boundary and logs them with context.
"""


class MigrationError(Exception):
    """Base class for all migration errors."""


class KeycloakError(MigrationError):
    """A Keycloak admin API call failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(KeycloakError):
    """The requested Keycloak entity does not exist (HTTP 404)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=404)


class KeyMaterialError(MigrationError):
    """Stored key text could not be parsed, or a public key is malformed."""


class GroupOperationError(MigrationError):
    """A project group could not be looked up, created or updated."""


class IdentityCreationError(MigrationError):
    """The default user for a project could not be provisioned."""


class MembershipAddError(MigrationError):
    """A user could not be placed in a group role."""
