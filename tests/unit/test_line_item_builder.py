"""Unit tests for InvoiceLineItemBuilder."""

from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from app.core.exceptions import ConfigurationError, InvalidStateError, NotFoundError
from app.models.billing import BillingContract
from app.models.enums import (
    BillingCycle,
    BillingType,
    ExpenseCategory,
    LineItemType,
    MilestoneStatus,
    TimeEntryStatus,
)
from app.models.work import Expense, Milestone, TimeEntry
from app.schemas.billing_model import (
    BillingConfiguration,
    FixedFeeBilling,
    HourlyBilling,
    MilestoneBilling,
    MixedBilling,
    RetainerBilling,
    SubscriptionBilling,
)
from app.schemas.invoice import CustomLineItem
from app.services.line_item_builder import (
    BillingSources,
    InvoiceLineItemBuilder,
    fixed_fee_reference,
)

PROJECT_ID = uuid4()
CLIENT_ID = uuid4()
CONTRACT_ID = uuid4()
TODAY = date(2026, 10, 19)


def make_builder(model, start_date=date(2026, 1, 1), **config) -> InvoiceLineItemBuilder:
    return InvoiceLineItemBuilder(
        contract_id=CONTRACT_ID,
        model=model,
        configuration=BillingConfiguration(**config),
        start_date=start_date,
    )


def time_entry(hours, status=TimeEntryStatus.APPROVED, billable=True, day=date(2026, 10, 1), **kwargs) -> TimeEntry:
    return TimeEntry(
        id=uuid4(),
        project_id=PROJECT_ID,
        user_name="Ana",
        description="Implementation",
        date=day,
        hours=Decimal(hours),
        billable=billable,
        status=status,
        **kwargs,
    )


def milestone(name, status=MilestoneStatus.COMPLETED) -> Milestone:
    return Milestone(
        id=uuid4(),
        project_id=PROJECT_ID,
        name=name,
        status=status,
        completed_at=datetime(2026, 10, 1, 12, 0),
    )


def expense(amount, billable=True) -> Expense:
    return Expense(
        id=uuid4(),
        project_id=PROJECT_ID,
        description="Train to client site",
        amount=Decimal(amount),
        date=date(2026, 10, 2),
        category=ExpenseCategory.TRAVEL,
        billable=billable,
    )


def test_hourly_invoice_totals():
    builder = make_builder(HourlyBilling(hourly_rate=Decimal("100")), tax_rate=Decimal("10"))
    sources = BillingSources(time_entries=[time_entry("3"), time_entry("5", day=date(2026, 10, 2))])

    draft = builder.build_draft(PROJECT_ID, CLIENT_ID, sources, TODAY)

    assert [item.amount for item in draft.line_items] == [Decimal("300.00"), Decimal("500.00")]
    assert all(item.type == LineItemType.TIME_ENTRY for item in draft.line_items)
    assert all(item.rate == Decimal("100.00") for item in draft.line_items)
    assert draft.totals.subtotal == Decimal("800.00")
    assert draft.totals.tax_amount == Decimal("80.00")
    assert draft.totals.total == Decimal("880.00")
    assert draft.billing_type == BillingType.HOURLY
    assert draft.payment_terms_days == 30


def test_hourly_skips_unapproved_non_billable_billed_and_claimed_entries():
    approved = time_entry("2")
    claimed = time_entry("4")
    sources = BillingSources(
        time_entries=[
            approved,
            time_entry("1", status=TimeEntryStatus.PENDING),
            time_entry("1", billable=False),
            time_entry("1", invoice_id=uuid4()),
            claimed,
        ],
        claimed_references={str(claimed.id)},
    )
    items = make_builder(HourlyBilling(hourly_rate=Decimal("50"))).build(sources, TODAY)
    assert [item.reference_id for item in items] == [str(approved.id)]
    assert items[0].amount == Decimal("100.00")


def test_hourly_items_sorted_by_date():
    late = time_entry("1", day=date(2026, 10, 5))
    early = time_entry("1", day=date(2026, 10, 1))
    items = make_builder(HourlyBilling(hourly_rate=Decimal("10"))).build(
        BillingSources(time_entries=[late, early]), TODAY
    )
    assert [item.reference_id for item in items] == [str(early.id), str(late.id)]


def test_fixed_fee_emitted_once():
    builder = make_builder(FixedFeeBilling(fixed_amount=Decimal("5000")))
    items = builder.build(BillingSources(), TODAY)
    assert len(items) == 1
    assert items[0].type == LineItemType.FLAT_FEE
    assert items[0].amount == Decimal("5000.00")
    assert items[0].reference_id == fixed_fee_reference(CONTRACT_ID)

    already_invoiced = BillingSources(claimed_references={items[0].reference_id})
    with pytest.raises(InvalidStateError):
        builder.build_draft(PROJECT_ID, CLIENT_ID, already_invoiced, TODAY)


def test_fixed_fee_forced_reissue():
    builder = make_builder(FixedFeeBilling(fixed_amount=Decimal("5000")))
    sources = BillingSources(claimed_references={fixed_fee_reference(CONTRACT_ID)})
    items = builder.build(sources, TODAY, force=True)
    assert [item.amount for item in items] == [Decimal("5000.00")]


def test_milestone_payout_and_missing_configuration():
    m1 = milestone("Discovery")
    m2 = milestone("Launch")
    model = MilestoneBilling(milestone_payments=[{"milestone_id": m1.id, "amount": Decimal("500")}])
    builder = make_builder(model)

    items = builder.build(BillingSources(milestones=[m1]), TODAY)
    assert len(items) == 1
    assert items[0].type == LineItemType.MILESTONE
    assert items[0].reference_id == str(m1.id)
    assert items[0].amount == Decimal("500.00")
    assert items[0].quantity == Decimal("1")

    with pytest.raises(NotFoundError) as exc_info:
        builder.build(BillingSources(milestones=[m1, m2]), TODAY)
    assert exc_info.value.context["milestone_id"] == m2.id


def test_milestone_not_completed_or_already_billed_is_skipped():
    pending = milestone("Beta", status=MilestoneStatus.IN_PROGRESS)
    billed = milestone("Alpha")
    model = MilestoneBilling(milestone_payments=[
        {"milestone_id": pending.id, "amount": 100},
        {"milestone_id": billed.id, "amount": 100},
    ])
    sources = BillingSources(milestones=[pending, billed], claimed_references={str(billed.id)})
    assert make_builder(model).build(sources, TODAY) == []


def test_retainer_bills_each_started_period():
    builder = make_builder(
        RetainerBilling(retainer_amount=Decimal("2000")),
        start_date=date(2026, 8, 15),
        billing_cycle=BillingCycle.MONTHLY,
    )
    draft = builder.build_draft(PROJECT_ID, CLIENT_ID, BillingSources(), TODAY)

    assert len(draft.line_items) == 3
    assert all(item.type == LineItemType.SUBSCRIPTION_PERIOD for item in draft.line_items)
    assert draft.totals.subtotal == Decimal("6000.00")
    assert draft.period_start == date(2026, 8, 15)
    assert draft.period_end == date(2026, 11, 14)
    assert "August 2026" in draft.line_items[0].description


def test_retainer_skips_invoiced_periods():
    builder = make_builder(
        SubscriptionBilling(subscription_amount=Decimal("99")),
        start_date=date(2026, 9, 1),
        billing_cycle=BillingCycle.MONTHLY,
    )
    first = builder.build(BillingSources(), TODAY)
    assert len(first) == 2

    again = builder.build(BillingSources(claimed_references={first[0].reference_id}), TODAY)
    assert [item.reference_id for item in again] == [first[1].reference_id]


def test_mixed_components_in_configured_order_then_expenses_then_custom():
    model = MixedBilling(components=[
        FixedFeeBilling(fixed_amount=Decimal("1000")),
        HourlyBilling(hourly_rate=Decimal("150")),
    ])
    entry = time_entry("2")
    travel = expense("80.50")
    sources = BillingSources(time_entries=[entry], expenses=[travel, expense("10", billable=False)])
    custom = CustomLineItem(description="Rush fee", amount=Decimal("250"), reference_id="rush-1")

    items = make_builder(model).build(sources, TODAY, include_expenses=True, custom_line_items=[custom])

    assert [item.type for item in items] == [
        LineItemType.FLAT_FEE,
        LineItemType.TIME_ENTRY,
        LineItemType.EXPENSE,
        LineItemType.FLAT_FEE,
    ]
    assert items[0].reference_id == fixed_fee_reference(CONTRACT_ID, 0)
    assert items[1].amount == Decimal("300.00")
    assert items[2].reference_id == str(travel.id)
    assert items[2].amount == Decimal("80.50")
    assert items[3].reference_id == "rush-1"


def test_expenses_only_when_requested():
    sources = BillingSources(time_entries=[time_entry("1")], expenses=[expense("40")])
    items = make_builder(HourlyBilling(hourly_rate=Decimal("100"))).build(sources, TODAY)
    assert [item.type for item in items] == [LineItemType.TIME_ENTRY]


def test_custom_items_without_reference_get_unique_ids():
    items = make_builder(HourlyBilling(hourly_rate=Decimal("100"))).build(
        BillingSources(),
        TODAY,
        custom_line_items=[CustomLineItem(description="A", amount=1), CustomLineItem(description="B", amount=2)],
    )
    assert len({item.reference_id for item in items}) == 2
    assert all(item.reference_id.startswith("custom:") for item in items)


def test_sum_of_line_items_equals_subtotal():
    builder = make_builder(HourlyBilling(hourly_rate=Decimal("97.35")), tax_rate=Decimal("8.25"),
                           discount_rate=Decimal("5"))
    sources = BillingSources(time_entries=[time_entry("1.25"), time_entry("0.75"), time_entry("3.5")])
    draft = builder.build_draft(PROJECT_ID, CLIENT_ID, sources, TODAY)
    assert sum(item.amount for item in draft.line_items) == draft.totals.subtotal
    assert draft.totals.total == draft.totals.subtotal - draft.totals.discount_amount + draft.totals.tax_amount


def test_nothing_to_invoice():
    with pytest.raises(InvalidStateError):
        make_builder(HourlyBilling(hourly_rate=Decimal("100"))).build_draft(
            PROJECT_ID, CLIENT_ID, BillingSources(), TODAY
        )


def _contract(billing_model: dict) -> BillingContract:
    return BillingContract(
        id=CONTRACT_ID,
        project_id=PROJECT_ID,
        billing_type=BillingType(billing_model["type"]),
        billing_model=billing_model,
        auto_invoice=False,
        billing_cycle=BillingCycle.MONTHLY,
        payment_terms_days=14,
        tax_rate=Decimal("0"),
        currency="USD",
        start_date=date(2026, 1, 1),
    )


def test_for_contract_rejects_type_mismatch():
    contract = _contract({"type": "HOURLY", "hourly_rate": "100"})
    with pytest.raises(ConfigurationError):
        InvoiceLineItemBuilder.for_contract(contract, BillingType.FIXED_FEE)


def test_for_contract_uses_contract_terms():
    contract = _contract({"type": "FIXED_FEE", "fixed_amount": "1200"})
    builder = InvoiceLineItemBuilder.for_contract(contract, BillingType.FIXED_FEE)
    draft = builder.build_draft(PROJECT_ID, CLIENT_ID, BillingSources(), TODAY)
    assert draft.payment_terms_days == 14
    assert draft.currency == "USD"
    assert draft.totals.total == Decimal("1200.00")


def test_for_contract_rejects_mixed_model_repeating_a_component():
    completed = milestone("Discovery")
    payout = {"milestone_id": str(completed.id), "amount": "500"}
    contract = _contract({
        "type": "MIXED",
        "components": [
            {"type": "MILESTONE_BASED", "milestone_payments": [payout]},
            {"type": "MILESTONE_BASED", "milestone_payments": [payout]},
        ],
    })

    with pytest.raises(ConfigurationError) as exc_info:
        InvoiceLineItemBuilder.for_contract(contract, BillingType.MIXED)
    assert exc_info.value.context["contract_id"] == CONTRACT_ID


def test_mixed_milestone_component_bills_each_milestone_once():
    completed = milestone("Discovery")
    model = MixedBilling(components=[
        MilestoneBilling(milestone_payments=[{"milestone_id": completed.id, "amount": Decimal("500")}]),
        HourlyBilling(hourly_rate=Decimal("100")),
    ])

    items = make_builder(model).build(BillingSources(milestones=[completed]), TODAY)

    assert [(item.reference_id, item.amount) for item in items] == [(str(completed.id), Decimal("500.00"))]
