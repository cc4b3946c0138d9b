"""Billing Error Taxonomy

Validation errors are raised before any gateway call so nothing is partially
applied. Gateway failures are normally reported as ``PaymentResult`` values;
``GatewayError`` is raised only when a caller explicitly asks for it.
"""

from decimal import Decimal
from typing import Any, Dict, Optional


class BillingError(Exception):
    """Base class for all billing domain errors"""

    code = "BILLING_ERROR"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_log_extra(self) -> Dict[str, Any]:
        """Context rendered with JSON-friendly values"""
        out: Dict[str, Any] = {"error_code": self.code}
        for key, value in self.context.items():
            out[key] = value if isinstance(value, (int, float, str, bool)) else str(value)
        return out

    def __str__(self) -> str:
        return self.message


class ConfigurationError(BillingError):
    """Billing model/type mismatch, missing contract, or unconfigured gateway"""

    code = "BILLING_CONFIGURATION_ERROR"
    status_code = 422


class NotFoundError(BillingError):
    """Missing project, invoice, payment or milestone-payment mapping"""

    code = "RESOURCE_NOT_FOUND"
    status_code = 404


class InvalidStateError(BillingError):
    """Illegal invoice lifecycle transition"""

    code = "INVALID_INVOICE_STATE"
    status_code = 409


class OverpaymentError(BillingError):
    """Payment exceeds the remaining invoice balance"""

    code = "OVERPAYMENT"
    status_code = 422

    def __init__(
        self,
        invoice_id: Any,
        amount: Decimal,
        remaining: Decimal,
        message: Optional[str] = None,
    ):
        super().__init__(
            message
            or f"Payment amount {amount} exceeds remaining balance {remaining} on invoice {invoice_id}",
            invoice_id=invoice_id,
            amount=amount,
            remaining=remaining,
        )
        self.amount = amount
        self.remaining = remaining


class InvalidPaymentError(BillingError):
    """Payment attempt is malformed (non-positive amount, wrong currency)"""

    code = "INVALID_PAYMENT"
    status_code = 422


class RefundError(BillingError):
    """Refund exceeds what is left to refund on a payment"""

    code = "INVALID_REFUND"
    status_code = 422


class GatewayError(BillingError):
    """Failure reported by a payment adapter, carrying the adapter's message"""

    code = "PAYMENT_GATEWAY_ERROR"
    status_code = 502

    def __init__(self, gateway: str, message: str, **context: Any):
        super().__init__(message, gateway=gateway, **context)
        self.gateway = gateway


class WebhookVerificationError(BillingError):
    """Provider notification whose signature or payload cannot be trusted"""

    code = "WEBHOOK_REJECTED"
    status_code = 400

    def __init__(self, provider: str, message: str, **context: Any):
        super().__init__(message, provider=provider, **context)
        self.provider = provider


class ReminderDeliveryError(BillingError):
    """A reminder channel could not deliver the message"""

    code = "REMINDER_DELIVERY_FAILED"
    status_code = 502
