"""Unit tests for ProfitabilityService."""

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.models.enums import InvoiceStatus, TimeEntryStatus
from app.services.profitability_service import ProfitabilityService


def invoice(total, status=InvoiceStatus.PAID):
    return SimpleNamespace(total=Decimal(total), status=status)


def entry(hours, billable=True, status=TimeEntryStatus.APPROVED):
    return SimpleNamespace(hours=Decimal(hours), billable=billable, status=status)


def test_metrics_from_paid_invoices_expenses_and_approved_time():
    project_id = uuid4()
    metrics = ProfitabilityService.compute_metrics(
        project_id,
        invoices=[invoice("8000"), invoice("2000"), invoice("5000", status=InvoiceStatus.SENT)],
        expenses=[SimpleNamespace(amount=Decimal("1500")), SimpleNamespace(amount=Decimal("500"))],
        time_entries=[entry("60"), entry("20", billable=False), entry("40", status=TimeEntryStatus.PENDING)],
    )

    assert metrics.project_id == project_id
    assert metrics.total_revenue == Decimal("10000.00")
    assert metrics.total_expenses == Decimal("2000.00")
    assert metrics.profit == Decimal("8000.00")
    assert metrics.profit_margin == Decimal("80.00")
    assert metrics.total_hours == Decimal("80.00")
    assert metrics.billable_hours == Decimal("60.00")
    assert metrics.hourly_rate == Decimal("125.00")
    assert metrics.billing_efficiency == Decimal("75.00")


def test_ratios_are_zero_without_revenue_or_hours():
    metrics = ProfitabilityService.compute_metrics(
        uuid4(), invoices=[], expenses=[SimpleNamespace(amount=Decimal("300"))], time_entries=[]
    )
    assert metrics.total_revenue == Decimal("0.00")
    assert metrics.profit == Decimal("-300.00")
    assert metrics.profit_margin == Decimal("0.00")
    assert metrics.hourly_rate == Decimal("0.00")
    assert metrics.billing_efficiency == Decimal("0.00")


@pytest.mark.asyncio
async def test_compute_unknown_project():
    db = AsyncMock(spec=AsyncSession)
    with patch(
        "app.services.profitability_service.BillingService.get_project",
        new_callable=AsyncMock,
        side_effect=NotFoundError("Project not found"),
    ):
        with pytest.raises(NotFoundError):
            await ProfitabilityService.compute(db, uuid4())
    assert not db.execute.called
