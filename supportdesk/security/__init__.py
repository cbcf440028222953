"""Role model and authorization policy."""

from .roles import CAPABILITIES, INTERNAL_ROLES, Action, Role, Scope, allowed_roles

__all__ = [
    "Action",
    "CAPABILITIES",
    "INTERNAL_ROLES",
    "Role",
    "Scope",
    "allowed_roles",
]
