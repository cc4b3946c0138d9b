"""Reminder Service - escalating payment reminders for unpaid invoices

Which reminder is due is decided here; getting it to the client is the job
of a ``ReminderChannel`` (email, SMS, ...) supplied by the deployment.
"""

import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import InvalidStateError, ReminderDeliveryError
from app.core.logging import bind_billing_context, get_logger
from app.models.billing import Invoice
from app.models.client import Client
from app.models.collections import PaymentReminder
from app.models.enums import InvoiceStatus, ReminderType
from app.schemas.collections import ReminderMessage
from app.services.invoice_lifecycle import InvoiceLifecycleManager, paid_amount
from app.utils.money import quantize
from app.utils.time import as_date, resolve_now

logger = get_logger(__name__)

# Days past due at which each overdue notice goes out, most escalated first
OVERDUE_STEPS = (
    (ReminderType.OVERDUE_FINAL, 30),
    (ReminderType.OVERDUE_2ND, 14),
    (ReminderType.OVERDUE_1ST, 7),
)

SUBJECTS = {
    ReminderType.BEFORE_DUE: "Payment Reminder - Invoice #{number} Due Soon",
    ReminderType.ON_DUE_DATE: "Payment Due Today - Invoice #{number}",
    ReminderType.OVERDUE_1ST: "Overdue Notice - Invoice #{number}",
    ReminderType.OVERDUE_2ND: "Second Notice - Invoice #{number} Past Due",
    ReminderType.OVERDUE_FINAL: "FINAL NOTICE - Invoice #{number} Collection Warning",
}

BODIES = {
    ReminderType.BEFORE_DUE: (
        "Friendly reminder: Invoice #{number} for {balance} is due on {due:%Y-%m-%d}. "
        "Please submit payment to avoid any late fees."
    ),
    ReminderType.ON_DUE_DATE: (
        "Payment due today: Invoice #{number} for {balance} is due today. "
        "Please submit payment as soon as possible."
    ),
    ReminderType.OVERDUE_1ST: (
        "Overdue notice: Invoice #{number} for {balance} is now {days} days overdue. "
        "Please submit payment immediately to avoid additional late fees."
    ),
    ReminderType.OVERDUE_2ND: (
        "Second notice: Invoice #{number} for {balance} is {days} days overdue. Immediate payment is "
        "required. Please contact us if you need to discuss payment arrangements."
    ),
    ReminderType.OVERDUE_FINAL: (
        "Final notice: Invoice #{number} for {balance} is severely overdue ({days} days). This account "
        "will be forwarded to collections if payment is not received within 5 business days."
    ),
}


def select_reminder(
    due_date: date,
    today: date,
    delivered: Iterable[ReminderType] = (),
    days_before_due: int = 3,
) -> Optional[ReminderType]:
    """
    The reminder due today, or None.

    Overdue invoices get the most escalated notice they have reached; once
    that one went out nothing is sent until the next step is reached.
    """
    delivered = set(delivered)
    days_overdue = (today - due_date).days
    if days_overdue < 0:
        due = ReminderType.BEFORE_DUE if -days_overdue <= days_before_due else None
    elif days_overdue == 0:
        due = ReminderType.ON_DUE_DATE
    else:
        due = next((kind for kind, days in OVERDUE_STEPS if days_overdue >= days), None)
    return due if due is not None and due not in delivered else None


def compose_reminder(
    invoice: Invoice,
    reminder_type: ReminderType,
    today: date,
    recipient: Optional[str] = None,
) -> ReminderMessage:
    remaining = quantize(Decimal(invoice.total) - paid_amount(invoice))
    values = {
        "number": invoice.invoice_number,
        "balance": f"{remaining:.2f} {invoice.currency}",
        "due": invoice.due_date,
        "days": max((today - invoice.due_date).days, 0),
    }
    return ReminderMessage(
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        reminder_type=reminder_type,
        recipient=recipient,
        subject=SUBJECTS[reminder_type].format(**values),
        body=BODIES[reminder_type].format(**values),
        due_date=invoice.due_date,
        remaining_balance=remaining,
        late_fee=quantize(invoice.late_fee_amount or 0),
        currency=invoice.currency,
    )


class ReminderChannel(ABC):
    """Delivers reminder messages; raises ReminderDeliveryError on failure"""

    name: str = "channel"

    @abstractmethod
    async def deliver(self, message: ReminderMessage) -> None:
        ...


class LoggingReminderChannel(ReminderChannel):
    """Default channel: records the reminder in the application log only"""

    name = "log"

    async def deliver(self, message: ReminderMessage) -> None:
        if not message.recipient:
            raise ReminderDeliveryError(
                f"Client for invoice {message.invoice_number} has no email address",
                invoice_id=message.invoice_id,
            )
        bind_billing_context(logger, invoice_id=str(message.invoice_id)).info(
            "Payment reminder",
            extra={
                "reminder_type": message.reminder_type.value,
                "recipient": message.recipient,
                "subject": message.subject,
            },
        )


class ReminderService:
    def __init__(self, channel: Optional[ReminderChannel] = None):
        self.channel = channel or LoggingReminderChannel()

    @staticmethod
    async def delivered_types(db: AsyncSession, invoice_ids: List[UUID]) -> Dict[UUID, Set[ReminderType]]:
        if not invoice_ids:
            return {}
        result = await db.execute(
            select(PaymentReminder.invoice_id, PaymentReminder.reminder_type)
            .where(PaymentReminder.invoice_id.in_(invoice_ids), PaymentReminder.delivered.is_(True))
        )
        delivered: Dict[UUID, Set[ReminderType]] = defaultdict(set)
        for invoice_id, reminder_type in result.all():
            delivered[invoice_id].add(ReminderType(reminder_type))
        return delivered

    async def _deliver(
        self,
        db: AsyncSession,
        invoice: Invoice,
        reminder_type: ReminderType,
        recipient: Optional[str],
        now: datetime,
    ) -> PaymentReminder:
        """Send one reminder and record the attempt; failures are recorded, not raised"""
        message = compose_reminder(invoice, reminder_type, as_date(now), recipient)
        error = None
        try:
            await self.channel.deliver(message)
        except ReminderDeliveryError as e:
            error = e.message
            bind_billing_context(logger, invoice_id=str(invoice.id)).warning(
                "Reminder delivery failed",
                extra={**e.to_log_extra(), "reminder_type": reminder_type.value, "channel": self.channel.name},
            )
        reminder = PaymentReminder(
            id=uuid.uuid4(),
            invoice_id=invoice.id,
            reminder_type=reminder_type,
            recipient=recipient,
            subject=message.subject,
            due_date=invoice.due_date,
            delivered=error is None,
            error=error,
            sent_at=now,
        )
        db.add(reminder)
        return reminder

    async def process_reminders(self, db: AsyncSession, now: Optional[datetime] = None) -> List[PaymentReminder]:
        """
        Sweep: send each unpaid invoice the reminder due today.

        Only delivered reminders count as sent, so a failed delivery is tried
        again on the next run.
        """
        now = resolve_now(now)
        today = as_date(now)
        horizon = today + timedelta(days=settings.REMINDER_DAYS_BEFORE_DUE)
        result = await db.execute(
            select(Invoice, Client.email)
            .join(Client, Client.id == Invoice.client_id)
            .where(
                Invoice.status.in_([InvoiceStatus.SENT, InvoiceStatus.OVERDUE]),
                Invoice.due_date <= horizon,
            )
            .order_by(Invoice.due_date)
        )
        rows = result.all()
        delivered = await self.delivered_types(db, [invoice.id for invoice, _ in rows])

        reminders: List[PaymentReminder] = []
        for invoice, email in rows:
            if quantize(Decimal(invoice.total) - paid_amount(invoice)) <= 0:
                continue
            reminder_type = select_reminder(
                invoice.due_date, today, delivered.get(invoice.id, ()), settings.REMINDER_DAYS_BEFORE_DUE
            )
            if reminder_type is None:
                continue
            reminders.append(await self._deliver(db, invoice, reminder_type, email, now))

        if reminders:
            await db.commit()
        logger.info(
            "Reminder sweep finished",
            extra={
                "reminders_delivered": sum(1 for r in reminders if r.delivered),
                "reminders_failed": sum(1 for r in reminders if not r.delivered),
            },
        )
        return reminders

    async def send_reminder(
        self,
        db: AsyncSession,
        invoice_id: UUID,
        reminder_type: Optional[ReminderType] = None,
        now: Optional[datetime] = None,
    ) -> PaymentReminder:
        """
        Send a reminder on demand. Without an explicit type the one due today
        is sent; repeating a type is allowed.

        Raises ReminderDeliveryError after recording a failed delivery.
        """
        now = resolve_now(now)
        invoice = await InvoiceLifecycleManager.get_invoice(db, invoice_id)
        if invoice.status not in (InvoiceStatus.SENT, InvoiceStatus.OVERDUE):
            raise InvalidStateError(
                f"Reminders go to unpaid sent invoices; {invoice.invoice_number} is {invoice.status.value}",
                invoice_id=invoice.id,
                status=invoice.status.value,
            )
        if quantize(Decimal(invoice.total) - paid_amount(invoice)) <= 0:
            raise InvalidStateError(f"Invoice {invoice.invoice_number} has no balance due", invoice_id=invoice.id)

        if reminder_type is None:
            reminder_type = select_reminder(invoice.due_date, as_date(now), (), settings.REMINDER_DAYS_BEFORE_DUE)
            if reminder_type is None:
                raise InvalidStateError(
                    f"No reminder is due for invoice {invoice.invoice_number} yet", invoice_id=invoice.id
                )

        email = (await db.execute(select(Client.email).where(Client.id == invoice.client_id))).scalar_one_or_none()
        reminder = await self._deliver(db, invoice, reminder_type, email, now)
        await db.commit()
        if not reminder.delivered:
            raise ReminderDeliveryError(reminder.error, invoice_id=invoice.id, reminder_id=reminder.id)
        return reminder
