"""Roles, actions and the capability table consulted by the policy."""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Mapping


class Role(str, Enum):
    """Supported roles."""

    ADMIN = "admin"
    SUPPORT_LEAD = "support-lead"
    SUPPORT_STAFF = "support-staff"
    CLIENT = "client"


INTERNAL_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.SUPPORT_LEAD, Role.SUPPORT_STAFF})


class Action(str, Enum):
    """Operations gated by the authorization policy."""

    CREATE_TICKET = "create_ticket"
    VIEW_TICKET = "view_ticket"
    UPDATE_TICKET = "update_ticket"
    ADD_MESSAGE = "add_message"
    ADD_INTERNAL_NOTE = "add_internal_note"
    LOG_TIME = "log_time"
    REQUEST_CONVERSION = "request_conversion"
    DECIDE_INTERNAL_APPROVAL = "decide_internal_approval"
    DECIDE_CLIENT_APPROVAL = "decide_client_approval"
    VIEW_ORGANIZATIONS = "view_organizations"
    MANAGE_ORGANIZATIONS = "manage_organizations"
    VIEW_USERS = "view_users"
    MANAGE_USERS = "manage_users"
    UPDATE_PROFILE = "update_profile"
    VIEW_INVOICES = "view_invoices"
    MANAGE_INVOICES = "manage_invoices"
    MANAGE_BILLING_SETTINGS = "manage_billing_settings"


class Scope(str, Enum):
    """How far a granted capability reaches."""

    ANY = "any"
    OWN_ORGANIZATION = "own_organization"
    SELF = "self"


def _grant(**roles: Scope) -> Mapping[Role, Scope]:
    return MappingProxyType({Role(name.replace("_", "-")): scope for name, scope in roles.items()})


_ANY = Scope.ANY
_ORG = Scope.OWN_ORGANIZATION

# Action -> role -> scope. A role missing from an entry has no access at all.
CAPABILITIES: Mapping[Action, Mapping[Role, Scope]] = MappingProxyType(
    {
        Action.CREATE_TICKET: _grant(admin=_ANY, support_lead=_ANY, support_staff=_ANY, client=_ORG),
        Action.VIEW_TICKET: _grant(admin=_ANY, support_lead=_ANY, support_staff=_ANY, client=_ORG),
        Action.UPDATE_TICKET: _grant(admin=_ANY, support_lead=_ANY, support_staff=_ANY),
        Action.ADD_MESSAGE: _grant(admin=_ANY, support_lead=_ANY, support_staff=_ANY, client=_ORG),
        Action.ADD_INTERNAL_NOTE: _grant(admin=_ANY, support_lead=_ANY, support_staff=_ANY),
        Action.LOG_TIME: _grant(admin=_ANY, support_lead=_ANY, support_staff=_ANY),
        Action.REQUEST_CONVERSION: _grant(admin=_ANY, support_lead=_ANY, support_staff=_ANY),
        Action.DECIDE_INTERNAL_APPROVAL: _grant(admin=_ANY, support_lead=_ANY),
        Action.DECIDE_CLIENT_APPROVAL: _grant(client=_ORG),
        Action.VIEW_ORGANIZATIONS: _grant(admin=_ANY, support_lead=_ANY, support_staff=_ANY, client=_ORG),
        Action.MANAGE_ORGANIZATIONS: _grant(admin=_ANY),
        Action.VIEW_USERS: _grant(admin=_ANY, support_lead=_ANY, support_staff=_ANY, client=_ORG),
        Action.MANAGE_USERS: _grant(admin=_ANY),
        Action.UPDATE_PROFILE: _grant(
            admin=Scope.SELF, support_lead=Scope.SELF, support_staff=Scope.SELF, client=Scope.SELF
        ),
        Action.VIEW_INVOICES: _grant(admin=_ANY, client=_ORG),
        Action.MANAGE_INVOICES: _grant(admin=_ANY),
        Action.MANAGE_BILLING_SETTINGS: _grant(admin=_ANY),
    }
)


def allowed_roles(action: Action) -> frozenset[Role]:
    """Return the roles holding any grant for ``action``."""

    return frozenset(CAPABILITIES.get(action, {}))
