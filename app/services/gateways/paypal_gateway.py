"""PayPal wallet gateway (Orders v2 REST API over httpx)

The payer approves an order in the PayPal UI; we capture it here. The order
id travels in ``attempt.metadata["order_id"]`` (or the payment reference).
"""

import json
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Tuple

import httpx

from app.core.exceptions import ConfigurationError, GatewayError, WebhookVerificationError
from app.core.logging import get_logger
from app.models.enums import PaymentMethod, WebhookEventKind
from app.schemas.payment import PaymentAttempt, PaymentResult, WebhookEvent
from app.services.gateways.base import PaymentGateway
from app.utils.money import quantize

logger = get_logger(__name__)

WEBHOOK_KINDS = {
    "PAYMENT.CAPTURE.COMPLETED": WebhookEventKind.PAYMENT_SUCCEEDED,
    "PAYMENT.CAPTURE.DENIED": WebhookEventKind.PAYMENT_FAILED,
    "PAYMENT.CAPTURE.DECLINED": WebhookEventKind.PAYMENT_FAILED,
}

# Transmission headers PayPal signs every webhook delivery with
SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class PayPalGateway(PaymentGateway):
    name = "paypal"
    methods = frozenset({PaymentMethod.PAYPAL})

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str,
        timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        webhook_id: Optional[str] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.webhook_id = webhook_id
        self._http_client = http_client

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_seconds) as client:
            yield client

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        resp = await client.post(
            f"{self.base_url}/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        self._raise_for_status(resp, "authentication failed")
        token = self._json(resp, "authentication failed").get("access_token")
        if not token:
            raise GatewayError(self.name, "PayPal authentication failed: no access token returned")
        return token

    async def process_payment(self, attempt: PaymentAttempt) -> PaymentResult:
        order_id = attempt.metadata.get("order_id") or attempt.payment_reference
        if not order_id:
            return PaymentResult.failed(attempt.amount, attempt.currency, "PayPal payments require an order_id")

        request_id = (
            attempt.metadata.get("request_id")
            or attempt.metadata.get("idempotency_key")
            or f"capture-{order_id}"
        )
        try:
            async with self._client() as client:
                token = await self._access_token(client)
                resp = await client.post(
                    f"{self.base_url}/v2/checkout/orders/{order_id}/capture",
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Content-Type": "application/json",
                        "PayPal-Request-Id": request_id,
                    },
                )
                self._raise_for_status(resp, "capture failed")
                data = self._json(resp, "capture failed")
            if data.get("status") != "COMPLETED":
                raise GatewayError(self.name, f"PayPal order {order_id} is {data.get('status')}")
            capture = _first_capture(data)
            amount, currency = self._captured_amount(capture, attempt)
        except GatewayError as e:
            logger.warning("PayPal capture failed", extra={**e.to_log_extra(), "order_id": order_id})
            return PaymentResult.failed(attempt.amount, attempt.currency, e.message)
        except httpx.HTTPError as e:
            logger.warning("PayPal unreachable", extra={"gateway": self.name, "order_id": order_id})
            return PaymentResult.failed(attempt.amount, attempt.currency, f"PayPal request failed: {e}")

        if currency != attempt.currency:
            return PaymentResult.failed(
                attempt.amount, attempt.currency,
                f"PayPal captured {currency}, expected {attempt.currency}",
            )
        return PaymentResult(
            success=True,
            payment_id=capture.get("id") or order_id,
            transaction_id=order_id,
            amount=amount,
            currency=currency,
            payment_reference=attempt.payment_reference or order_id,
        )

    async def refund(
        self,
        payment_id: str,
        amount: Optional[Decimal],
        currency: str,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> PaymentResult:
        """Refund a capture; ``payment_id`` is the PayPal capture id"""
        body: Dict[str, Any] = {}
        if amount is not None:
            body["amount"] = {"value": f"{quantize(amount):.2f}", "currency_code": currency}
        if reason:
            body["note_to_payer"] = reason[:255]

        requested = amount if amount is not None else Decimal("0.00")
        headers = {"Content-Type": "application/json"}
        if idempotency_key:
            headers["PayPal-Request-Id"] = idempotency_key

        try:
            async with self._client() as client:
                token = await self._access_token(client)
                headers["Authorization"] = f"Bearer {token}"
                resp = await client.post(
                    f"{self.base_url}/v2/payments/captures/{payment_id}/refund",
                    json=body,
                    headers=headers,
                )
                self._raise_for_status(resp, "refund failed")
                data = self._json(resp, "refund failed")
            if data.get("status") not in ("COMPLETED", "PENDING"):
                raise GatewayError(self.name, f"PayPal refund is {data.get('status')}")
            refunded = (data.get("amount") or {}).get("value")
            refunded_amount = _parse_amount(self.name, refunded) if refunded is not None else requested
        except GatewayError as e:
            logger.warning("PayPal refund failed", extra={**e.to_log_extra(), "capture_id": payment_id})
            return PaymentResult.failed(requested, currency, e.message)
        except httpx.HTTPError as e:
            logger.warning("PayPal unreachable", extra={"gateway": self.name, "capture_id": payment_id})
            return PaymentResult.failed(requested, currency, f"PayPal request failed: {e}")

        return PaymentResult(
            success=True,
            payment_id=data.get("id"),
            transaction_id=payment_id,
            amount=refunded_amount,
            currency=currency,
        )

    async def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        """Verify the delivery with PayPal's verify-webhook-signature endpoint"""
        if not self.webhook_id:
            raise ConfigurationError("PayPal webhook id is not configured", gateway=self.name)
        try:
            event = json.loads(payload)
        except ValueError as e:
            raise WebhookVerificationError(self.name, "Malformed PayPal event") from e
        if not isinstance(event, dict) or not event.get("id"):
            raise WebhookVerificationError(self.name, "Malformed PayPal event")

        transmission = {field: headers.get(header) for field, header in SIGNATURE_HEADERS.items()}
        missing = sorted(header for field, header in SIGNATURE_HEADERS.items() if not transmission[field])
        if missing:
            raise WebhookVerificationError(self.name, f"Missing PayPal headers: {', '.join(missing)}")

        try:
            async with self._client() as client:
                token = await self._access_token(client)
                resp = await client.post(
                    f"{self.base_url}/v1/notifications/verify-webhook-signature",
                    json={**transmission, "webhook_id": self.webhook_id, "webhook_event": event},
                    headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                )
                self._raise_for_status(resp, "webhook verification failed")
                verification = self._json(resp, "webhook verification failed")
        except (GatewayError, httpx.HTTPError) as e:
            logger.warning("PayPal webhook verification unavailable", extra={"gateway": self.name, "event_id": event["id"]})
            raise WebhookVerificationError(self.name, f"PayPal webhook could not be verified: {e}") from e
        if verification.get("verification_status") != "SUCCESS":
            raise WebhookVerificationError(self.name, "PayPal signature verification failed", event_id=event["id"])

        event_type = str(event.get("event_type") or "")
        kind = WEBHOOK_KINDS.get(event_type, WebhookEventKind.IGNORED)
        if kind == WebhookEventKind.IGNORED:
            return WebhookEvent(provider=self.name, event_id=event["id"], event_type=event_type, kind=kind)

        resource = event.get("resource") or {}
        amount = resource.get("amount") or {}
        related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
        try:
            value = _parse_amount(self.name, amount["value"]) if amount.get("value") is not None else None
        except GatewayError as e:
            raise WebhookVerificationError(self.name, e.message, event_id=event["id"]) from e
        return WebhookEvent(
            provider=self.name,
            event_id=event["id"],
            event_type=event_type,
            kind=kind,
            external_id=resource.get("id"),
            order_id=related.get("order_id"),
            amount=value,
            currency=amount.get("currency_code"),
            error=(resource.get("status_details") or {}).get("reason"),
        )

    def _captured_amount(self, capture: Dict[str, Any], attempt: PaymentAttempt) -> Tuple[Decimal, str]:
        captured = capture.get("amount") or {}
        if not isinstance(captured, dict):
            raise GatewayError(self.name, "PayPal capture has no amount")
        amount = _parse_amount(self.name, captured.get("value", attempt.amount))
        return amount, captured.get("currency_code", attempt.currency)

    def _json(self, resp: httpx.Response, action: str) -> Dict[str, Any]:
        """Response body as a JSON object; anything else is a gateway failure"""
        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise GatewayError(
                self.name,
                f"PayPal {action}: unexpected response body",
                http_status=resp.status_code,
            )
        return data

    def _raise_for_status(self, resp: httpx.Response, action: str) -> None:
        if resp.is_success:
            return
        detail = None
        try:
            payload = resp.json()
            details = payload.get("details") or []
            detail = (details[0].get("description") if details else None) or payload.get("message")
        except (ValueError, AttributeError, IndexError):
            detail = resp.text or None
        raise GatewayError(
            self.name,
            f"PayPal {action}: {detail or resp.reason_phrase}",
            http_status=resp.status_code,
        )


def _parse_amount(gateway: str, value: Any) -> Decimal:
    try:
        return quantize(value)
    except (ArithmeticError, TypeError, ValueError) as e:
        raise GatewayError(gateway, f"PayPal returned an unreadable amount: {value!r}") from e


def _first_capture(order: Dict[str, Any]) -> Dict[str, Any]:
    try:
        capture = order["purchase_units"][0]["payments"]["captures"][0]
    except (KeyError, IndexError, TypeError):
        return {}
    return capture if isinstance(capture, dict) else {}
