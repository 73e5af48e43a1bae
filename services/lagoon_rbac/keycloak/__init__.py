"""Keycloak admin API adapters."""

from .client import AdminCredentials, KeycloakAdminClient
from .groups import GROUP_ROLES, Failed, Found, Group, GroupLookup, GroupService, NotFound
from .users import User, UserService

__all__ = [
    "GROUP_ROLES",
    "AdminCredentials",
    "Failed",
    "Found",
    "Group",
    "GroupLookup",
    "GroupService",
    "KeycloakAdminClient",
    "NotFound",
    "User",
    "UserService",
]
