"""Collections Pydantic Schemas - late fees and payment reminders"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import ReminderType


class LateFeeResponse(BaseModel):
    id: UUID
    invoice_id: UUID
    amount: Decimal
    percentage: Optional[Decimal] = None
    flat_amount: Optional[Decimal] = None
    days_past_due: int
    reason: Optional[str] = None
    applied_at: datetime
    waived: bool
    waived_at: Optional[datetime] = None
    waived_by: Optional[str] = None
    waive_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class LateFeeWaiveRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ReminderRequest(BaseModel):
    reminder_type: Optional[ReminderType] = Field(
        None, description="Omit to send whichever reminder is due today"
    )


class ReminderMessage(BaseModel):
    """What a reminder channel delivers"""
    invoice_id: UUID
    invoice_number: str
    reminder_type: ReminderType
    recipient: Optional[str] = None
    subject: str
    body: str
    due_date: date
    remaining_balance: Decimal
    late_fee: Decimal = Decimal("0.00")
    currency: str


class ReminderResponse(BaseModel):
    id: UUID
    invoice_id: UUID
    reminder_type: ReminderType
    recipient: Optional[str] = None
    subject: str
    due_date: date
    delivered: bool
    error: Optional[str] = None
    sent_at: datetime

    model_config = ConfigDict(from_attributes=True)
