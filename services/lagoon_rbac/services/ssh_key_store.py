"""SSH key records in the API database.

Keys are indexed by fingerprint and linked to Keycloak user ids through
`user_ssh_key`. Callers own the transaction; nothing here commits.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lagoon_rbac.db.models import SshKey, UserSshKey


async def select_user_ids_by_fingerprint(db: AsyncSession, fingerprint: str) -> list[str]:
    """Keycloak user ids owning a key with this fingerprint."""
    result = await db.execute(
        select(UserSshKey.usid)
        .join(SshKey, SshKey.id == UserSshKey.skid)
        .where(SshKey.key_fingerprint == fingerprint)
        .order_by(SshKey.id)
    )
    return list(result.scalars().all())


async def select_key_by_fingerprint(db: AsyncSession, fingerprint: str) -> SshKey | None:
    result = await db.execute(select(SshKey).where(SshKey.key_fingerprint == fingerprint))
    return result.scalar_one_or_none()


async def insert_ssh_key(
    db: AsyncSession,
    *,
    name: str,
    key_type: str,
    key_value: str,
    key_fingerprint: str,
) -> SshKey:
    """Add a key row and flush to obtain its id."""
    key = SshKey(
        name=name,
        key_type=key_type,
        key_value=key_value,
        key_fingerprint=key_fingerprint,
    )
    db.add(key)
    await db.flush()
    return key


async def add_ssh_key_to_user(db: AsyncSession, ssh_key_id: int, user_id: str) -> None:
    db.add(UserSshKey(usid=user_id, skid=ssh_key_id))
    await db.flush()
