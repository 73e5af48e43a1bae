"""
SQLAlchemy mappings of the legacy Lagoon API tables.

These mirror tables that already exist in the API database; only the
columns the migration reads or writes are mapped. Table names are the
legacy singular names (`project`, `user`, ...), not the plural convention.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all models."""


class Customer(Base):
    """Customer owning one or more projects.

    Before group-based RBAC, the customer's private key was the deploy key
    for all of its projects.
    """

    __tablename__ = "customer"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str | None] = mapped_column(String(50), nullable=True)
    private_key: Mapped[str | None] = mapped_column(Text, nullable=True)


class Project(Base):
    """Legacy project record."""

    __tablename__ = "project"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    customer: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("customer.id"), nullable=True
    )
    private_key: Mapped[str | None] = mapped_column(Text, nullable=True)


class LegacyUser(Base):
    """Row in the pre-Keycloak `user` table. Email is the Keycloak username."""

    __tablename__ = "user"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str | None] = mapped_column(String(100), nullable=True)


class ProjectUser(Base):
    """Per-row ACL: user `usid` has access to project `pid`."""

    __tablename__ = "project_user"

    pid: Mapped[int] = mapped_column(Integer, primary_key=True)
    usid: Mapped[int] = mapped_column(Integer, primary_key=True)


class SshKey(Base):
    """Public SSH key, indexed by fingerprint."""

    __tablename__ = "ssh_key"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    key_value: Mapped[str] = mapped_column(String(5000), nullable=False)
    key_type: Mapped[str] = mapped_column(String(50), nullable=False, default="ssh-rsa")
    key_fingerprint: Mapped[str | None] = mapped_column(
        String(51), unique=True, nullable=True, index=True
    )
    created: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class UserSshKey(Base):
    """Links an SSH key to a Keycloak user id."""

    __tablename__ = "user_ssh_key"

    usid: Mapped[str] = mapped_column(String(36), primary_key=True)
    skid: Mapped[int] = mapped_column(
        Integer, ForeignKey("ssh_key.id", ondelete="CASCADE"), primary_key=True
    )


@dataclass(frozen=True)
class ProjectRecord:
    """Detached snapshot of a project row.

    Unaffected by session rollbacks, so one failing project cannot expire
    the rows of the projects after it.
    """

    id: int
    name: str
    private_key: str | None = None
