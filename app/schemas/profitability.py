from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel


class ProfitabilityMetrics(BaseModel):
    """Derived on demand from PAID invoices, expenses and approved time; never stored"""
    project_id: UUID
    total_revenue: Decimal
    total_expenses: Decimal
    total_hours: Decimal
    billable_hours: Decimal
    profit: Decimal
    profit_margin: Decimal
    hourly_rate: Decimal
    billing_efficiency: Decimal
