"""
Migrate legacy project permissions into Keycloak groups.

Idempotent: safe to re-run; existing groups, users and keys are reused.
Run via: python -m lagoon_rbac.cli.migrate

Reads configuration from environment variables (see lagoon_rbac.config):
  KEYCLOAK_ADMIN_PASSWORD       - Keycloak admin password
  LAGOON_RBAC_KEYCLOAK__URL     - Keycloak base URL
  LAGOON_RBAC_DATABASE_URL      - API database URL (SQLAlchemy async)

Exits 0 after a full pass, even if some projects were skipped; inspect the
log for skipped projects, fix them and run again. Exits 1 if Keycloak or
the database cannot be reached.
"""

import asyncio
import sys

from sqlalchemy.exc import SQLAlchemyError

from lagoon_rbac.config import Settings, settings
from lagoon_rbac.db.session import close_db, create_engine, create_session_factory, init_db
from lagoon_rbac.errors import KeycloakError
from lagoon_rbac.keycloak.client import AdminCredentials, KeycloakAdminClient
from lagoon_rbac.logging_config import configure_logging, get_logger
from lagoon_rbac.services.reconciliation import MigrationReport, Reconciler

logger = get_logger("lagoon_rbac.migrate")


async def migrate(config: Settings) -> MigrationReport:
    """Run one migration pass with a single db connection and Keycloak login."""
    admin_client = KeycloakAdminClient.connect(
        config.keycloak.url,
        realm=config.keycloak.admin_realm,
        timeout=config.keycloak.timeout_seconds,
    )
    engine = create_engine(config.database_url, echo=config.debug)
    try:
        await admin_client.authenticate(
            AdminCredentials(
                username=config.keycloak.admin_username,
                password=config.keycloak_admin_password,
                client_id=config.keycloak.client_id,
            )
        )
        keycloak = admin_client.for_realm(config.keycloak.realm)

        await init_db(engine)
        session_factory = create_session_factory(engine)
        async with session_factory() as session:
            return await Reconciler(session, keycloak).run()
    finally:
        await admin_client.aclose()
        await close_db(engine)


def main() -> None:
    configure_logging(settings.log_level, json_logs=settings.json_logs)
    try:
        report = asyncio.run(migrate(settings))
    except KeycloakError as e:
        logger.error("Could not connect to Keycloak", error=str(e))
        sys.exit(1)
    except (OSError, SQLAlchemyError) as e:
        logger.error("Could not connect to the database", error=str(e))
        sys.exit(1)

    for outcome in report.skipped + report.failed:
        logger.warning(
            "Project needs attention",
            project=outcome.project_name,
            status=outcome.status,
            state=outcome.state,
            errors=outcome.errors,
        )


if __name__ == "__main__":
    main()
