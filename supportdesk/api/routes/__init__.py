"""Route modules exposed by the API package."""

from . import approvals, billing, dashboard, organizations, ping, tickets, users

__all__ = ["approvals", "billing", "dashboard", "organizations", "ping", "tickets", "users"]
