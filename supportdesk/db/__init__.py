"""Database models and utilities."""

from .models import (
    ActivityTable,
    ConversionRequestTable,
    InvoiceTable,
    OrganizationTable,
    TicketMessageTable,
    TicketTable,
    TimeEntryTable,
    UserTable,
)

__all__ = [
    "ActivityTable",
    "ConversionRequestTable",
    "InvoiceTable",
    "OrganizationTable",
    "TicketMessageTable",
    "TicketTable",
    "TimeEntryTable",
    "UserTable",
]
