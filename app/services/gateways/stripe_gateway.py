"""Stripe card gateway

The stripe SDK is synchronous, so calls run in a worker thread. Amounts are
sent in the currency's minor unit (19.99 USD -> 1999). The SDK's own HTTP
timeout is kept below the registry's, so an abandoned call does not keep
its thread busy for long.
"""

import asyncio
import json
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import stripe

from app.core.exceptions import ConfigurationError, GatewayError, WebhookVerificationError
from app.core.logging import get_logger
from app.models.enums import PaymentMethod, WebhookEventKind
from app.schemas.payment import PaymentAttempt, PaymentResult, WebhookEvent
from app.services.gateways.base import PaymentGateway
from app.utils.money import from_minor_units, to_minor_units

logger = get_logger(__name__)

SUCCEEDED_REFUND_STATES = frozenset({"succeeded", "pending"})

WEBHOOK_KINDS = {
    "payment_intent.succeeded": WebhookEventKind.PAYMENT_SUCCEEDED,
    "payment_intent.payment_failed": WebhookEventKind.PAYMENT_FAILED,
}


class StripeGateway(PaymentGateway):
    name = "stripe"
    methods = frozenset({PaymentMethod.STRIPE})

    def __init__(
        self,
        api_key: str,
        webhook_secret: Optional[str] = None,
        request_timeout_seconds: Optional[float] = None,
        max_network_retries: int = 0,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        if request_timeout_seconds is not None:
            stripe.default_http_client = stripe.RequestsClient(timeout=request_timeout_seconds)
        stripe.max_network_retries = max_network_retries

    async def process_payment(self, attempt: PaymentAttempt) -> PaymentResult:
        payment_method = attempt.metadata.get("payment_method_id") or attempt.payment_reference
        if not payment_method:
            return PaymentResult.failed(
                attempt.amount, attempt.currency, "Stripe payments require a payment_method_id"
            )

        idempotency_key = attempt.idempotency_key()
        params: Dict[str, Any] = {
            "amount": to_minor_units(attempt.amount, attempt.currency),
            "currency": attempt.currency.lower(),
            "payment_method": payment_method,
            "confirm": True,
            "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
            # idempotency_key stays in metadata so webhooks can find the local row
            "metadata": {
                **{str(k): str(v) for k, v in attempt.metadata.items() if k != "payment_method_id"},
                "idempotency_key": idempotency_key,
            },
            "idempotency_key": idempotency_key,
            "api_key": self.api_key,
        }
        if attempt.metadata.get("customer_id"):
            params["customer"] = attempt.metadata["customer_id"]

        try:
            intent = await asyncio.to_thread(stripe.PaymentIntent.create, **params)
        except stripe.StripeError as e:
            return self._failure(e, attempt.amount, attempt.currency)

        if intent.status != "succeeded":
            return PaymentResult.failed(
                attempt.amount, attempt.currency, f"Stripe payment intent is {intent.status}"
            )

        return PaymentResult(
            success=True,
            payment_id=intent.id,
            transaction_id=_charge_id(intent),
            amount=from_minor_units(intent.amount_received or intent.amount, attempt.currency),
            currency=attempt.currency,
            payment_reference=attempt.payment_reference,
        )

    async def refund(
        self,
        payment_id: str,
        amount: Optional[Decimal],
        currency: str,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> PaymentResult:
        params: Dict[str, Any] = {
            "payment_intent": payment_id,
            "reason": "requested_by_customer",
            "api_key": self.api_key,
        }
        if amount is not None:
            params["amount"] = to_minor_units(amount, currency)
        if reason:
            params["metadata"] = {"reason": reason}
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        requested = amount if amount is not None else Decimal("0.00")
        try:
            refund = await asyncio.to_thread(stripe.Refund.create, **params)
        except stripe.StripeError as e:
            return self._failure(e, requested, currency)

        if refund.status not in SUCCEEDED_REFUND_STATES:
            return PaymentResult.failed(requested, currency, f"Stripe refund is {refund.status}")

        return PaymentResult(
            success=True,
            payment_id=refund.id,
            transaction_id=payment_id,
            amount=from_minor_units(refund.amount, currency),
            currency=currency,
        )

    async def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        if not self.webhook_secret:
            raise ConfigurationError("Stripe webhook secret is not configured", gateway=self.name)
        signature = headers.get("stripe-signature")
        if not signature:
            raise WebhookVerificationError(self.name, "Missing Stripe-Signature header")
        try:
            stripe.WebhookSignature.verify_header(
                payload, signature, self.webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(self.name, "Stripe signature verification failed") from e
        try:
            event = json.loads(payload)
            event_id, event_type = event["id"], event["type"]
        except (ValueError, KeyError, TypeError) as e:
            raise WebhookVerificationError(self.name, "Malformed Stripe event") from e

        kind = WEBHOOK_KINDS.get(event_type, WebhookEventKind.IGNORED)
        if kind == WebhookEventKind.IGNORED:
            return WebhookEvent(provider=self.name, event_id=event_id, event_type=event_type, kind=kind)

        intent = (event.get("data") or {}).get("object") or {}
        currency = str(intent.get("currency") or "").upper() or None
        received = intent.get("amount_received") or intent.get("amount")
        error = (intent.get("last_payment_error") or {}).get("message")
        return WebhookEvent(
            provider=self.name,
            event_id=event_id,
            event_type=event_type,
            kind=kind,
            external_id=intent.get("id"),
            idempotency_key=(intent.get("metadata") or {}).get("idempotency_key"),
            amount=from_minor_units(received, currency) if received is not None and currency else None,
            currency=currency,
            error=error,
        )

    def _failure(self, error: "stripe.StripeError", amount: Decimal, currency: str) -> PaymentResult:
        message = getattr(error, "user_message", None) or str(error) or "Stripe request failed"
        gateway_error = GatewayError(self.name, message, stripe_code=getattr(error, "code", None))
        logger.warning("Stripe request failed", extra=gateway_error.to_log_extra())
        return PaymentResult.failed(amount, currency, gateway_error.message)


def _charge_id(intent: Any) -> Optional[str]:
    charge = getattr(intent, "latest_charge", None)
    if charge is None or isinstance(charge, str):
        return charge
    return getattr(charge, "id", None)
