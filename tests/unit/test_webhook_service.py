"""Unit tests for reconciling provider webhooks with recorded payments."""

from datetime import date, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConfigurationError, WebhookVerificationError
from app.models.billing import Invoice
from app.models.enums import (
    BillingType,
    InvoiceStatus,
    PaymentMethod,
    PaymentStatus,
    ReconciliationResult,
    WebhookEventKind,
)
from app.models.payment import Payment
from app.schemas.payment import PaymentAttempt, PaymentResult, WebhookEvent
from app.services.gateways.base import GatewayRegistry, PaymentGateway
from app.services.gateways.manual import ManualGateway
from app.services.invoice_lifecycle import InvoiceLifecycleManager
from app.services.webhook_service import WebhookService

GET_INVOICE = "app.services.invoice_lifecycle.InvoiceLifecycleManager.get_invoice"
NOW = datetime(2026, 10, 19, 9, 30)


class StubStripeGateway(PaymentGateway):
    name = "stripe"
    methods = frozenset({PaymentMethod.STRIPE})

    def __init__(self, event=None, error=None):
        self.event = event
        self.error = error

    async def process_payment(self, attempt: PaymentAttempt) -> PaymentResult:
        return PaymentResult(success=True, amount=attempt.amount, currency=attempt.currency)

    async def refund(self, payment_id, amount, currency, reason=None, idempotency_key=None):
        return PaymentResult(success=True, amount=amount, currency=currency)

    async def parse_webhook(self, payload, headers):
        if self.error:
            raise self.error
        return self.event


def make_invoice(status=InvoiceStatus.SENT, total="500.00") -> Invoice:
    return Invoice(
        id=uuid4(),
        invoice_number="INV-202610-0003",
        client_id=uuid4(),
        project_id=uuid4(),
        status=status,
        billing_type=BillingType.HOURLY,
        currency="USD",
        subtotal=Decimal(total),
        discount_amount=Decimal("0.00"),
        tax_amount=Decimal("0.00"),
        late_fee_amount=Decimal("0.00"),
        total=Decimal(total),
        issue_date=date(2026, 10, 1),
        due_date=date(2026, 10, 31),
        line_items=[],
        payments=[],
        late_fees=[],
    )


def add_payment(invoice, amount="500.00", status=PaymentStatus.FAILED, external_id=None) -> Payment:
    payment = Payment(
        id=uuid4(),
        invoice_id=invoice.id,
        amount=Decimal(amount),
        currency="USD",
        payment_method=PaymentMethod.STRIPE,
        status=status,
        external_id=external_id,
        error="Stripe timed out after 5s" if status == PaymentStatus.FAILED else None,
        refunded_amount=Decimal("0.00"),
        payment_metadata={"idempotency_key": "key-1"},
    )
    invoice.payments.append(payment)
    return payment


def succeeded(amount="500.00", currency="USD", **overrides) -> WebhookEvent:
    values = dict(
        provider="stripe",
        event_id="evt_1",
        event_type="payment_intent.succeeded",
        kind=WebhookEventKind.PAYMENT_SUCCEEDED,
        external_id="pi_123",
        idempotency_key="key-1",
        amount=Decimal(amount),
        currency=currency,
    )
    values.update(overrides)
    return WebhookEvent(**values)


@pytest.fixture
def gateway() -> StubStripeGateway:
    return StubStripeGateway()


@pytest.fixture
def service(gateway) -> WebhookService:
    registry = GatewayRegistry([ManualGateway(), gateway])
    return WebhookService(registry, InvoiceLifecycleManager(registry))


@pytest.mark.asyncio
async def test_success_event_completes_timed_out_payment(service):
    db = AsyncMock(spec=AsyncSession)
    invoice = make_invoice()
    payment = add_payment(invoice)

    with patch.object(WebhookService, "find_payment", new_callable=AsyncMock) as mock_find, \
            patch(GET_INVOICE, new_callable=AsyncMock) as mock_get:
        mock_find.return_value = payment
        mock_get.return_value = invoice
        outcome = await service.reconcile(db, succeeded(), NOW)

        mock_get.assert_awaited_once_with(db, invoice.id, for_update=True)

    assert outcome.result == ReconciliationResult.COMPLETED
    assert outcome.payment_id == payment.id
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.external_id == "pi_123"
    assert payment.error is None
    assert payment.payment_metadata["reconciled_by_event"] == "evt_1"
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.paid_at == NOW
    db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_redelivered_event_is_already_recorded(service):
    db = AsyncMock(spec=AsyncSession)
    invoice = make_invoice(status=InvoiceStatus.PAID)
    payment = add_payment(invoice, status=PaymentStatus.COMPLETED, external_id="pi_123")

    with patch.object(WebhookService, "find_payment", new_callable=AsyncMock) as mock_find, \
            patch(GET_INVOICE, new_callable=AsyncMock) as mock_get:
        mock_find.return_value = payment
        mock_get.return_value = invoice
        outcome = await service.reconcile(db, succeeded(), NOW)

    assert outcome.result == ReconciliationResult.ALREADY_RECORDED
    db.commit.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "event,invoice_status,other_paid,reason",
    [
        (succeeded(amount="550.00"), InvoiceStatus.SENT, None, "provider captured 550.00"),
        (succeeded(currency="EUR"), InvoiceStatus.SENT, None, "provider captured EUR"),
        (succeeded(), InvoiceStatus.CANCELLED, None, "invoice is CANCELLED"),
        # Paid by bank transfer while the card charge was in limbo
        (succeeded(), InvoiceStatus.SENT, "200.00", "only 300.00 remains due"),
    ],
)
async def test_capture_that_cannot_be_applied_needs_refund(service, event, invoice_status, other_paid, reason):
    db = AsyncMock(spec=AsyncSession)
    invoice = make_invoice(status=invoice_status)
    payment = add_payment(invoice)
    if other_paid:
        transfer = add_payment(invoice, amount=other_paid, status=PaymentStatus.COMPLETED)
        transfer.payment_method = PaymentMethod.BANK_TRANSFER

    with patch.object(WebhookService, "find_payment", new_callable=AsyncMock) as mock_find, \
            patch(GET_INVOICE, new_callable=AsyncMock) as mock_get:
        mock_find.return_value = payment
        mock_get.return_value = invoice
        outcome = await service.reconcile(db, event, NOW)

    assert outcome.result == ReconciliationResult.NEEDS_REFUND
    assert payment.status == PaymentStatus.FAILED
    assert reason in payment.error
    assert "refund required (event evt_1)" in payment.error
    assert payment.external_id == "pi_123"
    assert invoice.status == invoice_status
    db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_unmatched_event_changes_nothing(service):
    db = AsyncMock(spec=AsyncSession)

    with patch.object(WebhookService, "find_payment", new_callable=AsyncMock) as mock_find, \
            patch(GET_INVOICE, new_callable=AsyncMock) as mock_get:
        mock_find.return_value = None
        outcome = await service.reconcile(db, succeeded(), NOW)

        mock_get.assert_not_awaited()

    assert outcome.result == ReconciliationResult.UNMATCHED
    assert outcome.payment_id is None
    db.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_ignored_event_is_not_looked_up(service):
    db = AsyncMock(spec=AsyncSession)
    event = succeeded(kind=WebhookEventKind.IGNORED, event_type="charge.updated")

    with patch.object(WebhookService, "find_payment", new_callable=AsyncMock) as mock_find:
        outcome = await service.reconcile(db, event, NOW)
        mock_find.assert_not_awaited()

    assert outcome.result == ReconciliationResult.IGNORED


@pytest.mark.asyncio
async def test_failure_event_for_failed_payment_is_already_recorded(service):
    db = AsyncMock(spec=AsyncSession)
    invoice = make_invoice()
    payment = add_payment(invoice)
    event = succeeded(kind=WebhookEventKind.PAYMENT_FAILED, event_type="payment_intent.payment_failed")

    with patch.object(WebhookService, "find_payment", new_callable=AsyncMock) as mock_find, \
            patch(GET_INVOICE, new_callable=AsyncMock) as mock_get:
        mock_find.return_value = payment
        mock_get.return_value = invoice
        outcome = await service.reconcile(db, event, NOW)

    assert outcome.result == ReconciliationResult.ALREADY_RECORDED


@pytest.mark.asyncio
async def test_failure_event_for_completed_payment_is_a_conflict(service):
    db = AsyncMock(spec=AsyncSession)
    invoice = make_invoice(status=InvoiceStatus.PAID)
    payment = add_payment(invoice, status=PaymentStatus.COMPLETED)
    event = succeeded(kind=WebhookEventKind.PAYMENT_FAILED, event_type="payment_intent.payment_failed")

    with patch.object(WebhookService, "find_payment", new_callable=AsyncMock) as mock_find, \
            patch(GET_INVOICE, new_callable=AsyncMock) as mock_get:
        mock_find.return_value = payment
        mock_get.return_value = invoice
        outcome = await service.reconcile(db, event, NOW)

    assert outcome.result == ReconciliationResult.CONFLICT
    assert payment.status == PaymentStatus.COMPLETED
    assert invoice.status == InvoiceStatus.PAID
    db.commit.assert_not_awaited()


@pytest.mark.asyncio
async def test_handle_verifies_with_named_provider(service, gateway):
    db = AsyncMock(spec=AsyncSession)
    gateway.event = succeeded(kind=WebhookEventKind.IGNORED)

    outcome = await service.handle(db, "stripe", b"{}", {"stripe-signature": "t=1,v1=abc"}, NOW)

    assert outcome.result == ReconciliationResult.IGNORED
    assert outcome.event_id == "evt_1"


@pytest.mark.asyncio
async def test_handle_propagates_rejected_signature(service, gateway):
    gateway.error = WebhookVerificationError("stripe", "signature mismatch")

    with pytest.raises(WebhookVerificationError):
        await service.handle(AsyncMock(spec=AsyncSession), "stripe", b"{}", {}, NOW)


@pytest.mark.asyncio
async def test_handle_unknown_provider(service):
    with pytest.raises(ConfigurationError):
        await service.handle(AsyncMock(spec=AsyncSession), "paypal", b"{}", {}, NOW)


@pytest.mark.asyncio
async def test_find_payment_tries_key_first_within_provider_methods(service):
    payment = add_payment(make_invoice())
    result = MagicMock()
    result.scalar_one_or_none.return_value = payment
    db = AsyncMock(spec=AsyncSession)
    db.execute.return_value = result

    found = await service.find_payment(db, succeeded())

    assert found is payment
    stmt = db.execute.await_args.args[0]
    sql = str(stmt.compile(dialect=postgresql.dialect()))
    assert "payments.metadata ->>" in sql
    assert "payments.payment_method IN" in sql
    assert db.execute.await_count == 1
