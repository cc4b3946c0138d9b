"""Profitability Service - revenue, cost and utilization per project"""

from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.billing import Invoice
from app.models.enums import InvoiceStatus, TimeEntryStatus
from app.models.work import Expense, TimeEntry
from app.schemas.profitability import ProfitabilityMetrics
from app.services.billing_service import BillingService
from app.utils.money import HUNDRED, money_sum, quantize, to_decimal

ZERO = Decimal("0.00")


class ProfitabilityService:
    @staticmethod
    def compute_metrics(
        project_id: UUID,
        invoices: Iterable,
        expenses: Iterable,
        time_entries: Iterable,
    ) -> ProfitabilityMetrics:
        """
        Revenue counts PAID invoices only; expenses count whether billable or
        not; hours count APPROVED entries. Ratios are 0 when their
        denominator is 0.
        """
        revenue = money_sum(i.total for i in invoices if i.status == InvoiceStatus.PAID)
        costs = money_sum(e.amount for e in expenses)
        approved = [t for t in time_entries if t.status == TimeEntryStatus.APPROVED]
        total_hours = quantize(sum((to_decimal(t.hours) for t in approved), Decimal("0")))
        billable_hours = quantize(sum((to_decimal(t.hours) for t in approved if t.billable), Decimal("0")))

        profit = quantize(revenue - costs)
        return ProfitabilityMetrics(
            project_id=project_id,
            total_revenue=revenue,
            total_expenses=costs,
            total_hours=total_hours,
            billable_hours=billable_hours,
            profit=profit,
            profit_margin=quantize(profit / revenue * HUNDRED) if revenue else ZERO,
            hourly_rate=quantize(revenue / total_hours) if total_hours else ZERO,
            billing_efficiency=quantize(billable_hours / total_hours * HUNDRED) if total_hours else ZERO,
        )

    @staticmethod
    async def compute(db: AsyncSession, project_id: UUID) -> ProfitabilityMetrics:
        await BillingService.get_project(db, project_id)
        invoices = await db.execute(
            select(Invoice).where(Invoice.project_id == project_id, Invoice.status == InvoiceStatus.PAID)
        )
        expenses = await db.execute(select(Expense).where(Expense.project_id == project_id))
        time_entries = await db.execute(
            select(TimeEntry).where(
                TimeEntry.project_id == project_id,
                TimeEntry.status == TimeEntryStatus.APPROVED,
            )
        )
        return ProfitabilityService.compute_metrics(
            project_id,
            invoices.scalars().all(),
            expenses.scalars().all(),
            time_entries.scalars().all(),
        )
