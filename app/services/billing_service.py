"""Billing Service - generates invoices from a project's contract and tracked work"""

from datetime import date, datetime
from typing import Iterable, List, Optional, Set
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BillingError, ConfigurationError, NotFoundError
from app.core.logging import bind_billing_context, get_logger
from app.models.billing import BillingContract, Invoice, InvoiceLineItem
from app.models.client import Project
from app.models.enums import BillingType, InvoiceStatus, MilestoneStatus, TimeEntryStatus
from app.models.work import Expense, Milestone, TimeEntry
from app.schemas.billing_model import MixedBilling
from app.schemas.invoice import CustomLineItem
from app.services.invoice_lifecycle import InvoiceLifecycleManager
from app.services.line_item_builder import BillingSources, InvoiceLineItemBuilder
from app.services.recurring_billing import RecurringBillingScheduler
from app.utils.time import as_date, resolve_now

logger = get_logger(__name__)

RECURRING_TYPES = frozenset({BillingType.RETAINER, BillingType.SUBSCRIPTION})


def has_recurring_terms(contract: BillingContract) -> bool:
    try:
        model = contract.model
    except ValidationError as e:
        bind_billing_context(logger, contract_id=str(contract.id)).warning(
            "Contract has an invalid billing model", extra={"error": e.errors()[0]["msg"]}
        )
        return False
    if isinstance(model, MixedBilling):
        return any(BillingType(c.type) in RECURRING_TYPES for c in model.components)
    return BillingType(model.type) in RECURRING_TYPES


class BillingService:
    def __init__(self, lifecycle: InvoiceLifecycleManager):
        self.lifecycle = lifecycle

    @staticmethod
    async def get_project(db: AsyncSession, project_id: UUID) -> Project:
        result = await db.execute(select(Project).where(Project.id == project_id))
        project = result.scalar_one_or_none()
        if project is None:
            raise NotFoundError(f"Project {project_id} not found", project_id=project_id)
        return project

    @staticmethod
    async def get_active_contract(
        db: AsyncSession, project_id: UUID, for_update: bool = False
    ) -> BillingContract:
        """
        ``for_update`` locks the contract row, which serializes invoice
        generation for the project until the transaction ends.
        """
        stmt = (
            select(BillingContract)
            .where(BillingContract.project_id == project_id, BillingContract.is_active.is_(True))
            .order_by(BillingContract.start_date.desc())
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(stmt)
        contract = result.scalar_one_or_none()
        if contract is None:
            raise ConfigurationError(
                f"Project {project_id} has no active billing contract", project_id=project_id
            )
        return contract

    @staticmethod
    async def claimed_references(db: AsyncSession, project_id: UUID) -> Set[str]:
        """Reference ids already on a non-cancelled invoice of the project"""
        result = await db.execute(
            select(InvoiceLineItem.reference_id)
            .join(Invoice, Invoice.id == InvoiceLineItem.invoice_id)
            .where(Invoice.project_id == project_id, Invoice.status != InvoiceStatus.CANCELLED)
        )
        return set(result.scalars().all())

    @staticmethod
    async def load_sources(db: AsyncSession, project_id: UUID) -> BillingSources:
        time_entries = await db.execute(
            select(TimeEntry)
            .where(
                TimeEntry.project_id == project_id,
                TimeEntry.status == TimeEntryStatus.APPROVED,
                TimeEntry.billable.is_(True),
                TimeEntry.invoice_id.is_(None),
            )
            .order_by(TimeEntry.date, TimeEntry.created_at)
        )
        expenses = await db.execute(
            select(Expense)
            .where(
                Expense.project_id == project_id,
                Expense.billable.is_(True),
                Expense.invoice_id.is_(None),
            )
            .order_by(Expense.date, Expense.created_at)
        )
        milestones = await db.execute(
            select(Milestone)
            .where(
                Milestone.project_id == project_id,
                Milestone.status == MilestoneStatus.COMPLETED,
                Milestone.invoice_id.is_(None),
            )
            .order_by(Milestone.completed_at)
        )
        return BillingSources(
            time_entries=list(time_entries.scalars().all()),
            expenses=list(expenses.scalars().all()),
            milestones=list(milestones.scalars().all()),
            claimed_references=await BillingService.claimed_references(db, project_id),
        )

    async def generate_invoice(
        self,
        db: AsyncSession,
        project_id: UUID,
        billing_type: BillingType,
        include_expenses: bool = False,
        custom_line_items: Optional[Iterable[CustomLineItem]] = None,
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> Invoice:
        """
        Build and persist a DRAFT invoice for the project.

        Raises ConfigurationError when ``billing_type`` does not match the
        active contract, NotFoundError for a completed milestone without a
        configured payout, and InvalidStateError when nothing is billable.
        """
        now = resolve_now(now)
        project = await self.get_project(db, project_id)
        contract = await self.get_active_contract(db, project_id, for_update=True)
        builder = InvoiceLineItemBuilder.for_contract(contract, billing_type)
        sources = await self.load_sources(db, project_id)

        draft = builder.build_draft(
            project_id=project.id,
            client_id=project.client_id,
            sources=sources,
            today=as_date(now),
            include_expenses=include_expenses,
            custom_line_items=custom_line_items or (),
            force=force,
        )
        return await self.lifecycle.create_draft(db, draft, now=now)

    @staticmethod
    async def last_period_end(db: AsyncSession, project_id: UUID) -> Optional[date]:
        result = await db.execute(
            select(Invoice.period_end)
            .where(
                Invoice.project_id == project_id,
                Invoice.status != InvoiceStatus.CANCELLED,
                Invoice.period_end.is_not(None),
            )
            .order_by(Invoice.period_end.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def generate_recurring_invoices(self, db: AsyncSession, now: Optional[datetime] = None) -> List[Invoice]:
        """
        Sweep: draft an invoice for every auto-invoicing contract whose next
        retainer or subscription period has started. A failure on one contract
        is logged and does not stop the sweep.
        """
        now = resolve_now(now)
        today = as_date(now)
        result = await db.execute(
            select(BillingContract)
            .where(BillingContract.is_active.is_(True), BillingContract.auto_invoice.is_(True))
            .order_by(BillingContract.start_date)
        )
        contracts = [c for c in result.scalars().all() if has_recurring_terms(c)]

        generated: List[Invoice] = []
        for contract in contracts:
            log = bind_billing_context(logger, contract_id=str(contract.id), project_id=str(contract.project_id))
            last_end = await self.last_period_end(db, contract.project_id)
            if not RecurringBillingScheduler.is_due(
                contract.start_date, contract.billing_cycle, today, last_end, contract.end_date
            ):
                continue
            try:
                invoice = await self.generate_invoice(db, contract.project_id, contract.billing_type, now=now)
            except BillingError as e:
                log.warning("Recurring invoice skipped", extra=e.to_log_extra())
                continue
            generated.append(invoice)

        logger.info("Recurring billing sweep finished", extra={"invoices_generated": len(generated)})
        return generated
