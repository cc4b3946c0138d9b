"""Invoice Line Item Builder - turns tracked work and contract terms into priced line items"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import AbstractSet, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from app.core.exceptions import ConfigurationError, InvalidStateError, NotFoundError
from app.core.logging import get_logger
from app.models.enums import (
    BillingCycle,
    BillingType,
    LineItemType,
    MilestoneStatus,
    TimeEntryStatus,
)
from app.schemas.billing_model import (
    BillingConfiguration,
    FixedFeeBilling,
    HourlyBilling,
    MilestoneBilling,
    MixedBilling,
    RetainerBilling,
    SubscriptionBilling,
)
from app.schemas.invoice import CustomLineItem, InvoiceDraft, InvoiceTotals, LineItem
from app.services.recurring_billing import BillingPeriod, RecurringBillingScheduler
from app.utils.money import money_sum

logger = get_logger(__name__)

# (line item, billing period it covers when recurring)
_Built = Tuple[LineItem, Optional[BillingPeriod]]


@dataclass
class BillingSources:
    """Everything a project could be billed for, as loaded from the database"""
    time_entries: Sequence = ()
    expenses: Sequence = ()
    milestones: Sequence = ()
    claimed_references: AbstractSet[str] = field(default_factory=frozenset)


def fixed_fee_reference(contract_id, component: Optional[int] = None) -> str:
    if component is None:
        return f"fixed_fee:{contract_id}"
    return f"fixed_fee:{contract_id}:{component}"


def period_reference(contract_id, period: BillingPeriod, component: Optional[int] = None) -> str:
    if component is None:
        return f"period:{contract_id}:{period.start.isoformat()}"
    return f"period:{contract_id}:{component}:{period.start.isoformat()}"


class InvoiceLineItemBuilder:
    """
    Pure line-item generation for one billing contract.

    Source records already referenced by a non-cancelled invoice of the
    project (``claimed_references``) are skipped, so regenerating never
    bills the same time entry, expense, milestone, fixed fee or period twice.
    """

    def __init__(
        self,
        contract_id,
        model,
        configuration: BillingConfiguration,
        start_date: date,
        end_date: Optional[date] = None,
    ):
        self.contract_id = contract_id
        self.model = model
        self.configuration = configuration
        self.start_date = start_date
        self.end_date = end_date
        self._strategies: Dict[str, Callable[..., List[_Built]]] = {
            BillingType.HOURLY.value: self._hourly,
            BillingType.FIXED_FEE.value: self._fixed_fee,
            BillingType.MILESTONE_BASED.value: self._milestones,
            BillingType.RETAINER.value: self._recurring,
            BillingType.SUBSCRIPTION.value: self._recurring,
        }

    @classmethod
    def for_contract(cls, contract, billing_type: BillingType) -> "InvoiceLineItemBuilder":
        """Builder for a stored contract; the requested type must match the contract's model"""
        try:
            model = contract.model
        except ValidationError as e:
            raise ConfigurationError(
                f"Contract {contract.id} has an invalid billing model: {e.errors()[0]['msg']}",
                contract_id=contract.id,
                project_id=contract.project_id,
            ) from e
        if model.type != BillingType(billing_type).value:
            raise ConfigurationError(
                f"Billing type {BillingType(billing_type).value} does not match the contract model {model.type}",
                contract_id=contract.id,
                project_id=contract.project_id,
            )
        return cls(
            contract_id=contract.id,
            model=model,
            configuration=contract.configuration,
            start_date=contract.start_date,
            end_date=contract.end_date,
        )

    def build(
        self,
        sources: BillingSources,
        today: date,
        include_expenses: bool = False,
        custom_line_items: Iterable[CustomLineItem] = (),
        force: bool = False,
    ) -> List[LineItem]:
        return [item for item, _ in self._build(sources, today, include_expenses, custom_line_items, force)]

    def build_draft(
        self,
        project_id,
        client_id,
        sources: BillingSources,
        today: date,
        include_expenses: bool = False,
        custom_line_items: Iterable[CustomLineItem] = (),
        force: bool = False,
        notes: Optional[str] = None,
    ) -> InvoiceDraft:
        """Line items plus totals; raises InvalidStateError when there is nothing to bill"""
        built = self._build(sources, today, include_expenses, custom_line_items, force)
        if not built:
            raise InvalidStateError(
                "Nothing to invoice: no unbilled work for this billing type",
                project_id=project_id,
                contract_id=self.contract_id,
            )

        items = [item for item, _ in built]
        periods = [period for _, period in built if period is not None]
        totals = InvoiceTotals.compute(
            money_sum(item.amount for item in items),
            self.configuration.tax_rate,
            self.configuration.discount_rate,
        )
        return InvoiceDraft(
            project_id=project_id,
            client_id=client_id,
            billing_type=BillingType(self.model.type),
            currency=self.configuration.currency,
            line_items=items,
            totals=totals,
            payment_terms_days=self.configuration.payment_terms,
            period_start=min((p.start for p in periods), default=None),
            period_end=max((p.end for p in periods), default=None),
            notes=notes,
        )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _build(
        self,
        sources: BillingSources,
        today: date,
        include_expenses: bool,
        custom_line_items: Iterable[CustomLineItem],
        force: bool,
    ) -> List[_Built]:
        built: List[_Built] = []
        if isinstance(self.model, MixedBilling):
            for index, component in enumerate(self.model.components):
                built.extend(self._dispatch(component, sources, today, force, index))
        else:
            built.extend(self._dispatch(self.model, sources, today, force, None))

        if include_expenses:
            built.extend((item, None) for item in self._expenses(sources))

        for custom in custom_line_items:
            built.append((self._custom(custom), None))

        logger.debug(
            "Built line items",
            extra={"contract_id": str(self.contract_id), "line_item_count": len(built)},
        )
        return built

    def _dispatch(self, component, sources: BillingSources, today: date, force: bool, index: Optional[int]) -> List[_Built]:
        strategy = self._strategies[component.type]
        return strategy(component, sources, today=today, force=force, index=index)

    def _hourly(self, component: HourlyBilling, sources: BillingSources, **_) -> List[_Built]:
        entries = [
            entry for entry in sources.time_entries
            if entry.status == TimeEntryStatus.APPROVED
            and entry.billable
            and entry.invoice_id is None
            and str(entry.id) not in sources.claimed_references
        ]
        entries.sort(key=lambda e: e.date)
        return [
            (
                LineItem.timed(
                    reference_id=str(entry.id),
                    description=self._time_entry_description(entry),
                    hours=entry.hours,
                    rate=component.hourly_rate,
                ),
                None,
            )
            for entry in entries
        ]

    def _fixed_fee(self, component: FixedFeeBilling, sources: BillingSources, force: bool = False,
                   index: Optional[int] = None, **_) -> List[_Built]:
        reference = fixed_fee_reference(self.contract_id, index)
        if reference in sources.claimed_references and not force:
            return []
        item = LineItem.flat(LineItemType.FLAT_FEE, reference, "Fixed fee", component.fixed_amount)
        return [(item, None)]

    def _milestones(self, component: MilestoneBilling, sources: BillingSources, **_) -> List[_Built]:
        milestones = [
            milestone for milestone in sources.milestones
            if milestone.status == MilestoneStatus.COMPLETED
            and milestone.invoice_id is None
            and str(milestone.id) not in sources.claimed_references
        ]
        milestones.sort(key=lambda m: (m.completed_at is None, m.completed_at, m.name))

        built: List[_Built] = []
        for milestone in milestones:
            payout = component.payout_for(milestone.id)
            if payout is None:
                raise NotFoundError(
                    f"No payment configured for completed milestone '{milestone.name}'",
                    milestone_id=milestone.id,
                    contract_id=self.contract_id,
                )
            built.append((
                LineItem.flat(LineItemType.MILESTONE, str(milestone.id), f"Milestone: {milestone.name}", payout),
                None,
            ))
        return built

    def _recurring(self, component: Union[RetainerBilling, SubscriptionBilling], sources: BillingSources,
                   today: date, index: Optional[int] = None, **_) -> List[_Built]:
        if isinstance(component, RetainerBilling):
            amount, kind = component.retainer_amount, "Retainer"
        else:
            amount, kind = component.subscription_amount, "Subscription"
        cycle = self.configuration.billing_cycle

        built: List[_Built] = []
        for period in RecurringBillingScheduler.periods_until(self.start_date, cycle, today, self.end_date):
            reference = period_reference(self.contract_id, period, index)
            if reference in sources.claimed_references:
                continue
            description = f"{kind} - {period.label}"
            if cycle != BillingCycle.ONE_TIME:
                description = f"{description} ({period.start.isoformat()} to {period.end.isoformat()})"
            built.append((LineItem.flat(LineItemType.SUBSCRIPTION_PERIOD, reference, description, amount), period))
        return built

    def _expenses(self, sources: BillingSources) -> List[LineItem]:
        expenses = [
            expense for expense in sources.expenses
            if expense.billable
            and expense.invoice_id is None
            and str(expense.id) not in sources.claimed_references
        ]
        expenses.sort(key=lambda e: e.date)
        return [
            LineItem.flat(
                LineItemType.EXPENSE,
                str(expense.id),
                f"Expense: {expense.description or expense.category.value.title()} ({expense.date.isoformat()})",
                expense.amount,
            )
            for expense in expenses
        ]

    @staticmethod
    def _custom(custom: CustomLineItem) -> LineItem:
        description = custom.description
        if custom.quantity != 1 and custom.rate is not None:
            description = f"{description} ({custom.quantity} x {custom.rate})"
        return LineItem.flat(
            LineItemType.FLAT_FEE,
            custom.reference_id or f"custom:{uuid.uuid4().hex}",
            description,
            custom.total,
        )

    @staticmethod
    def _time_entry_description(entry) -> str:
        who = f"{entry.user_name}: " if entry.user_name else ""
        what = entry.description or "Professional services"
        return f"{entry.date.isoformat()} {who}{what}"
