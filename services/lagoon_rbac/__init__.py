"""Lagoon RBAC migration: legacy project ACLs to Keycloak groups."""

__version__ = "0.1.0"
