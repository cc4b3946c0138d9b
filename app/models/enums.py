"""Centralized Enum Definitions"""

import enum


# Domain 1: Clients & Projects
class ProjectStatus(str, enum.Enum):
    """Project delivery status"""
    PROPOSAL = "PROPOSAL"
    ACTIVE = "ACTIVE"
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# Domain 2: Billing contracts
class BillingType(str, enum.Enum):
    """How a project's work is converted into money owed"""
    HOURLY = "HOURLY"
    FIXED_FEE = "FIXED_FEE"
    MILESTONE_BASED = "MILESTONE_BASED"
    RETAINER = "RETAINER"
    SUBSCRIPTION = "SUBSCRIPTION"
    MIXED = "MIXED"


class BillingCycle(str, enum.Enum):
    """Invoicing cadence for recurring terms"""
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    YEARLY = "YEARLY"
    ONE_TIME = "ONE_TIME"


# Domain 3: Tracked work
class TimeEntryStatus(str, enum.Enum):
    """Time entry approval status"""
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class MilestoneStatus(str, enum.Enum):
    """Milestone progress"""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ExpenseCategory(str, enum.Enum):
    """Expense categories"""
    TRAVEL = "TRAVEL"
    MEALS = "MEALS"
    OFFICE = "OFFICE"
    SOFTWARE = "SOFTWARE"
    HARDWARE = "HARDWARE"
    SERVICES = "SERVICES"
    OTHER = "OTHER"


# Domain 4: Invoicing
class InvoiceStatus(str, enum.Enum):
    """Invoice lifecycle states"""
    DRAFT = "DRAFT"
    SENT = "SENT"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class LineItemType(str, enum.Enum):
    """Kind of source record a line item bills"""
    TIME_ENTRY = "time_entry"
    EXPENSE = "expense"
    MILESTONE = "milestone"
    FLAT_FEE = "flat_fee"
    SUBSCRIPTION_PERIOD = "subscription_period"


# Domain 5: Payments
class PaymentMethod(str, enum.Enum):
    """Supported payment methods"""
    STRIPE = "STRIPE"
    PAYPAL = "PAYPAL"
    BANK_TRANSFER = "BANK_TRANSFER"
    CHECK = "CHECK"
    WIRE_TRANSFER = "WIRE_TRANSFER"
    CASH = "CASH"


class PaymentStatus(str, enum.Enum):
    """Recorded payment outcome"""
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    REFUNDED = "REFUNDED"


class RefundStatus(str, enum.Enum):
    """Refund outcome"""
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PaymentSummaryStatus(str, enum.Enum):
    """Derived collection status of an invoice"""
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class WebhookEventKind(str, enum.Enum):
    """What a provider notification means for a recorded payment"""
    PAYMENT_SUCCEEDED = "PAYMENT_SUCCEEDED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    IGNORED = "IGNORED"


class ReconciliationResult(str, enum.Enum):
    """What reconciling a webhook event did to the local payment record"""
    IGNORED = "ignored"
    UNMATCHED = "unmatched"
    ALREADY_RECORDED = "already_recorded"
    COMPLETED = "completed"
    NEEDS_REFUND = "needs_refund"
    CONFLICT = "conflict"


# Domain 6: Collections
class ReminderType(str, enum.Enum):
    """Payment reminders, in escalation order"""
    BEFORE_DUE = "BEFORE_DUE"
    ON_DUE_DATE = "ON_DUE_DATE"
    OVERDUE_1ST = "OVERDUE_1ST"
    OVERDUE_2ND = "OVERDUE_2ND"
    OVERDUE_FINAL = "OVERDUE_FINAL"


MANUAL_PAYMENT_METHODS = frozenset({
    PaymentMethod.BANK_TRANSFER,
    PaymentMethod.CHECK,
    PaymentMethod.WIRE_TRANSFER,
    PaymentMethod.CASH,
})

TERMINAL_INVOICE_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED})

# Payments that still count towards what the client has paid
SETTLED_PAYMENT_STATUSES = frozenset({
    PaymentStatus.COMPLETED,
    PaymentStatus.PARTIALLY_REFUNDED,
    PaymentStatus.REFUNDED,
})
