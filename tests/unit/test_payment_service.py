"""Unit tests for PaymentService summaries and refunds."""

from datetime import date, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BillingError, NotFoundError, RefundError
from app.models.billing import Invoice
from app.models.enums import (
    BillingType,
    InvoiceStatus,
    PaymentMethod,
    PaymentStatus,
    PaymentSummaryStatus,
    RefundStatus,
)
from app.models.payment import Payment, Refund
from app.services.gateways.base import GatewayRegistry
from app.services.gateways.manual import ManualGateway
from app.services.payment_service import PaymentService, refund_idempotency_key

GET_PAYMENT = "app.services.payment_service.PaymentService.get_payment"
GET_REFUND = "app.services.payment_service.PaymentService.get_refund_by_key"
NOW = datetime(2026, 10, 19, 12, 0)


def make_invoice(status=InvoiceStatus.SENT, total="1000.00", due_date=date(2026, 11, 18)) -> Invoice:
    return Invoice(
        id=uuid4(),
        invoice_number="INV-202610-0001",
        client_id=uuid4(),
        project_id=uuid4(),
        status=status,
        billing_type=BillingType.FIXED_FEE,
        currency="USD",
        subtotal=Decimal(total),
        discount_amount=Decimal("0.00"),
        tax_amount=Decimal("0.00"),
        total=Decimal(total),
        issue_date=date(2026, 10, 19),
        due_date=due_date,
        line_items=[],
        payments=[],
    )


def make_payment(amount, status=PaymentStatus.COMPLETED, refunded="0.00", processed_at=NOW, invoice=None) -> Payment:
    payment = Payment(
        id=uuid4(),
        invoice_id=invoice.id if invoice is not None else uuid4(),
        amount=Decimal(amount),
        currency="USD",
        payment_method=PaymentMethod.BANK_TRANSFER,
        status=status,
        external_id=f"manual_{uuid4().hex}",
        refunded_amount=Decimal(refunded),
        processed_at=processed_at,
    )
    if invoice is not None:
        invoice.payments.append(payment)
    return payment


@pytest.fixture
def service() -> PaymentService:
    return PaymentService(GatewayRegistry([ManualGateway()]))


def test_summary_pending():
    summary = PaymentService.summarize(make_invoice(), NOW)
    assert summary.status == PaymentSummaryStatus.PENDING
    assert summary.paid_amount == Decimal("0.00")
    assert summary.remaining_balance == Decimal("1000.00")
    assert summary.payment_count == 0
    assert summary.last_payment_date is None


def test_summary_partial_ignores_failed_payments():
    invoice = make_invoice()
    make_payment("300", processed_at=datetime(2026, 10, 1), invoice=invoice)
    make_payment("200", processed_at=datetime(2026, 10, 5), invoice=invoice)
    make_payment("500", status=PaymentStatus.FAILED, processed_at=datetime(2026, 10, 9), invoice=invoice)

    summary = PaymentService.summarize(invoice, NOW)
    assert summary.status == PaymentSummaryStatus.PARTIAL
    assert summary.paid_amount == Decimal("500.00")
    assert summary.remaining_balance == Decimal("500.00")
    assert summary.payment_count == 2
    assert summary.last_payment_date == datetime(2026, 10, 5)


def test_summary_paid():
    invoice = make_invoice(status=InvoiceStatus.PAID)
    make_payment("1000", invoice=invoice)
    summary = PaymentService.summarize(invoice, NOW)
    assert summary.status == PaymentSummaryStatus.PAID
    assert summary.remaining_balance == Decimal("0.00")


def test_summary_overdue_once_past_due():
    invoice = make_invoice(due_date=date(2026, 10, 1))
    make_payment("100", invoice=invoice)
    assert PaymentService.summarize(invoice, NOW).status == PaymentSummaryStatus.OVERDUE
    assert PaymentService.summarize(invoice, datetime(2026, 9, 30)).status == PaymentSummaryStatus.PARTIAL


@pytest.mark.parametrize("paid", [None, "400"])
def test_summary_of_cancelled_invoice_is_cancelled(paid):
    invoice = make_invoice(status=InvoiceStatus.CANCELLED, due_date=date(2026, 10, 1))
    if paid:
        make_payment(paid, invoice=invoice)

    summary = PaymentService.summarize(invoice, NOW)

    assert summary.status == PaymentSummaryStatus.CANCELLED
    assert summary.paid_amount == Decimal(paid or "0.00")


def test_summary_counts_refunds_against_paid_amount():
    invoice = make_invoice()
    make_payment("400", status=PaymentStatus.PARTIALLY_REFUNDED, refunded="150.00", invoice=invoice)
    summary = PaymentService.summarize(invoice, NOW)
    assert summary.paid_amount == Decimal("250.00")
    assert summary.remaining_balance == Decimal("750.00")


def test_refund_key_is_stable_per_request():
    payment_id = uuid4()
    assert refund_idempotency_key(payment_id, Decimal("10"), "dup") == refund_idempotency_key(
        payment_id, Decimal("10.00"), " dup "
    )
    assert refund_idempotency_key(payment_id, None, None) != refund_idempotency_key(payment_id, Decimal("10"), None)
    assert refund_idempotency_key(payment_id, None, None) != refund_idempotency_key(uuid4(), None, None)


@pytest.mark.asyncio
async def test_partial_then_full_refund(service):
    db = AsyncMock(spec=AsyncSession)
    payment = make_payment("100")

    with patch(GET_PAYMENT, new_callable=AsyncMock, return_value=payment), \
            patch(GET_REFUND, new_callable=AsyncMock, return_value=None):
        partial = await service.refund_payment(db, payment.id, Decimal("30"), reason="Overbilled")
        assert partial.success is True
        assert partial.amount == Decimal("30.00")
        assert payment.refunded_amount == Decimal("30.00")
        assert payment.status == PaymentStatus.PARTIALLY_REFUNDED
        assert payment.net_amount == Decimal("70.00")

        rest = await service.refund_payment(db, payment.id)
        assert rest.amount == Decimal("70.00")
        assert payment.status == PaymentStatus.REFUNDED

        with pytest.raises(RefundError):
            await service.refund_payment(db, payment.id)

    added = [call.args[0] for call in db.add.call_args_list]
    assert all(isinstance(refund, Refund) for refund in added)
    assert [refund.amount for refund in added] == [Decimal("30.00"), Decimal("70.00")]
    assert {refund.status for refund in added} == {RefundStatus.COMPLETED}
    assert db.commit.await_count == 2


@pytest.mark.asyncio
async def test_refund_exceeding_refundable_balance_rejected(service):
    db = AsyncMock(spec=AsyncSession)
    payment = make_payment("100", status=PaymentStatus.PARTIALLY_REFUNDED, refunded="60.00")

    with patch(GET_PAYMENT, new_callable=AsyncMock, return_value=payment), \
            patch(GET_REFUND, new_callable=AsyncMock, return_value=None):
        with patch.object(service.gateways, "refund", new_callable=AsyncMock) as mock_refund:
            with pytest.raises(RefundError) as exc_info:
                await service.refund_payment(db, payment.id, Decimal("40.01"))
            assert not mock_refund.called

    assert exc_info.value.context["refundable"] == Decimal("40.00")
    assert payment.refunded_amount == Decimal("60.00")


@pytest.mark.asyncio
async def test_failed_payment_cannot_be_refunded(service):
    db = AsyncMock(spec=AsyncSession)
    payment = make_payment("100", status=PaymentStatus.FAILED)

    with patch(GET_PAYMENT, new_callable=AsyncMock, return_value=payment), \
            patch(GET_REFUND, new_callable=AsyncMock, return_value=None):
        with pytest.raises(RefundError):
            await service.refund_payment(db, payment.id, Decimal("10"))


@pytest.mark.asyncio
async def test_repeated_refund_returns_existing_refund(service):
    db = AsyncMock(spec=AsyncSession)
    payment = make_payment("100", status=PaymentStatus.PARTIALLY_REFUNDED, refunded="25.00")
    existing = Refund(
        id=uuid4(),
        payment_id=payment.id,
        amount=Decimal("25.00"),
        currency="USD",
        status=RefundStatus.COMPLETED,
        idempotency_key=refund_idempotency_key(payment.id, Decimal("25"), "Duplicate"),
        external_id="manual_refund_abc",
    )

    with patch(GET_PAYMENT, new_callable=AsyncMock, return_value=payment), \
            patch(GET_REFUND, new_callable=AsyncMock, return_value=existing) as mock_lookup:
        with patch.object(service.gateways, "refund", new_callable=AsyncMock) as mock_refund:
            result = await service.refund_payment(db, payment.id, Decimal("25"), reason="Duplicate")
            assert not mock_refund.called

    mock_lookup.assert_awaited_once_with(db, existing.idempotency_key)
    assert result.success is True
    assert result.payment_id == str(existing.id)
    assert result.transaction_id == "manual_refund_abc"
    assert payment.refunded_amount == Decimal("25.00")
    assert not db.commit.called


GET_INVOICE = "app.services.invoice_lifecycle.InvoiceLifecycleManager.get_invoice"


@pytest.mark.asyncio
async def test_list_invoice_payments_newest_first():
    db = AsyncMock(spec=AsyncSession)
    invoice = make_invoice()
    older = make_payment("100", invoice=invoice)
    newer = make_payment("50", status=PaymentStatus.FAILED, invoice=invoice)
    result = MagicMock()
    result.scalars.return_value.all.return_value = [newer, older]
    db.execute.return_value = result

    with patch(GET_INVOICE, new_callable=AsyncMock, return_value=invoice) as mock_get:
        payments = await PaymentService.list_invoice_payments(db, invoice.id)

    assert payments == [newer, older]
    mock_get.assert_awaited_once_with(db, invoice.id)
    sql = str(db.execute.await_args.args[0])
    assert "ORDER BY payments.created_at DESC" in sql


@pytest.mark.asyncio
async def test_list_payments_of_missing_invoice():
    db = AsyncMock(spec=AsyncSession)
    with patch(GET_INVOICE, new_callable=AsyncMock, side_effect=NotFoundError("Invoice not found")):
        with pytest.raises(NotFoundError):
            await PaymentService.list_invoice_payments(db, uuid4())
    assert not db.execute.called


def test_analytics_aggregates_net_revenue():
    acme, globex = uuid4(), uuid4()
    wire = make_payment("1000", processed_at=datetime(2026, 9, 12))
    card = make_payment("300", status=PaymentStatus.PARTIALLY_REFUNDED, refunded="100.00",
                        processed_at=datetime(2026, 10, 2))
    card.payment_method = PaymentMethod.STRIPE
    check = make_payment("250", processed_at=datetime(2026, 10, 15))
    check.payment_method = PaymentMethod.CHECK

    analytics = PaymentService.build_analytics(
        [(wire, acme, "Acme"), (card, globex, "Globex"), (check, acme, "Acme")],
        date(2026, 9, 1),
        date(2026, 10, 31),
        "USD",
    )

    assert analytics.total_revenue == Decimal("1450.00")
    assert analytics.payment_count == 3
    assert analytics.average_payment == Decimal("483.33")
    assert analytics.by_month == {"2026-09": Decimal("1000.00"), "2026-10": Decimal("450.00")}
    assert [(b.payment_method, b.amount, b.count) for b in analytics.by_method] == [
        (PaymentMethod.BANK_TRANSFER, Decimal("1000.00"), 1),
        (PaymentMethod.CHECK, Decimal("250.00"), 1),
        (PaymentMethod.STRIPE, Decimal("200.00"), 1),
    ]
    assert [(b.client_name, b.amount, b.count) for b in analytics.by_client] == [
        ("Acme", Decimal("1250.00"), 2),
        ("Globex", Decimal("200.00"), 1),
    ]


def test_analytics_with_no_payments():
    analytics = PaymentService.build_analytics([], date(2026, 10, 1), date(2026, 10, 31), "USD")
    assert analytics.total_revenue == Decimal("0.00")
    assert analytics.average_payment == Decimal("0.00")
    assert analytics.by_client == []


@pytest.mark.asyncio
async def test_analytics_queries_settled_payments_in_range(service):
    db = AsyncMock(spec=AsyncSession)
    result = MagicMock()
    result.all.return_value = []
    db.execute.return_value = result

    analytics = await service.get_payment_analytics(db, date(2026, 10, 1), date(2026, 10, 31), "eur")

    assert analytics.currency == "EUR"
    sql = str(db.execute.await_args.args[0])
    assert "JOIN clients" in sql
    assert "payments.status IN" in sql


@pytest.mark.asyncio
async def test_analytics_rejects_inverted_range(service):
    db = AsyncMock(spec=AsyncSession)
    with pytest.raises(BillingError):
        await service.get_payment_analytics(db, date(2026, 10, 31), date(2026, 10, 1))
    assert not db.execute.called
