"""Models Package - Export all models for easy imports"""

from app.models.base import (
    BaseModel,
    BilledMixin,
    ClientScopedMixin,
    ProjectScopedMixin,
    StatusMixin,
)
from app.models.enums import *
from app.models.client import Client, Project
from app.models.work import TimeEntry, Expense, Milestone
from app.models.billing import BillingContract, Invoice, InvoiceLineItem, InvoiceNumberSequence
from app.models.payment import Payment, Refund
from app.models.collections import LateFee, PaymentReminder


__all__ = [
    # Base classes
    "BaseModel",
    "BilledMixin",
    "ClientScopedMixin",
    "ProjectScopedMixin",
    "StatusMixin",

    # Clients & projects
    "Client",
    "Project",

    # Tracked work
    "TimeEntry",
    "Expense",
    "Milestone",

    # Billing
    "BillingContract",
    "Invoice",
    "InvoiceLineItem",
    "InvoiceNumberSequence",

    # Payments
    "Payment",
    "Refund",

    # Collections
    "LateFee",
    "PaymentReminder",
]
