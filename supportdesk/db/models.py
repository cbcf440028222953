"""SQLModel table definitions for the SupportDesk data layer."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, JSON, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


class OrganizationTable(SQLModel, table=True):
    """Client organizations."""

    __tablename__ = "organizations"

    id: str = Field(primary_key=True, index=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    plan: str = Field(sa_column=Column(String(50), nullable=False))
    contact_email: str = Field(sa_column=Column(String(255), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class UserTable(SQLModel, table=True):
    """Internal staff and client accounts; rows are deactivated, never deleted."""

    __tablename__ = "users"

    id: str = Field(primary_key=True, index=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    email: str = Field(sa_column=Column(String(255), nullable=False, unique=True))
    role: str = Field(sa_column=Column(String(50), nullable=False))
    organization_id: str | None = Field(
        default=None,
        sa_column=Column(String(36), ForeignKey("organizations.id"), nullable=True),
    )
    avatar: str = Field(sa_column=Column(String(8), nullable=False))
    phone: str | None = Field(default=None, sa_column=Column(String(50), nullable=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketTable(SQLModel, table=True):
    """Ticket records; ``revision`` backs the optimistic update check."""

    __tablename__ = "tickets"

    id: str = Field(primary_key=True, index=True)
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(sa_column=Column(String(50), nullable=False))
    priority: str = Field(sa_column=Column(String(50), nullable=False))
    category: str = Field(sa_column=Column(String(50), nullable=False))
    organization_id: str = Field(
        sa_column=Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    )
    created_by: str = Field(sa_column=Column(String(36), nullable=False))
    assigned_to: str | None = Field(default=None, sa_column=Column(String(36), nullable=True, index=True))
    revision: int = Field(default=1, sa_column=Column(Integer, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketMessageTable(SQLModel, table=True):
    """Append-only messages and internal notes on a ticket."""

    __tablename__ = "ticket_messages"

    id: str = Field(primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)
    )
    author_id: str = Field(sa_column=Column(String(36), nullable=False))
    content: str = Field(sa_column=Column(Text, nullable=False))
    is_internal: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TimeEntryTable(SQLModel, table=True):
    """Hours logged against a ticket."""

    __tablename__ = "ticket_time_entries"

    id: str = Field(primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False)
    )
    author_id: str = Field(sa_column=Column(String(36), nullable=False))
    hours: float = Field(sa_column=Column(Float, nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    entry_date: date = Field(sa_column=Column("date", Date, nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ConversionRequestTable(SQLModel, table=True):
    """Conversion proposals with their two approval tracks."""

    __tablename__ = "conversion_requests"

    id: str = Field(primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    proposed_type: str = Field(sa_column=Column(String(50), nullable=False))
    reason: str = Field(sa_column=Column(Text, nullable=False))
    proposed_by: str = Field(sa_column=Column(String(36), nullable=False))
    internal_approval: str = Field(sa_column=Column(String(20), nullable=False))
    client_approval: str = Field(sa_column=Column(String(20), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class InvoiceTable(SQLModel, table=True):
    """Monthly billing snapshots."""

    __tablename__ = "invoices"

    id: str = Field(primary_key=True, index=True)
    organization_id: str = Field(
        sa_column=Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    )
    month: int = Field(sa_column=Column(Integer, nullable=False))
    year: int = Field(sa_column=Column(Integer, nullable=False))
    tickets_closed: int = Field(sa_column=Column(Integer, nullable=False))
    total_hours: float = Field(sa_column=Column(Float, nullable=False))
    rate_per_hour: float = Field(sa_column=Column(Float, nullable=False))
    total_amount: float = Field(sa_column=Column(Float, nullable=False))
    status: str = Field(sa_column=Column(String(20), nullable=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class ActivityTable(SQLModel, table=True):
    """Append-only activity feed."""

    __tablename__ = "activities"

    id: str = Field(primary_key=True, index=True)
    type: str = Field(sa_column=Column(String(50), nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    actor_id: str = Field(sa_column=Column(String(36), nullable=False))
    ticket_id: str | None = Field(default=None, sa_column=Column(String(36), nullable=True, index=True))
    metadata_: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column("metadata", JSON, nullable=False)
    )
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
