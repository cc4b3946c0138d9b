"""Payment Gateway abstraction and registry"""

import asyncio
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Awaitable, Dict, FrozenSet, Iterable, Mapping, Optional

from app.core.exceptions import ConfigurationError, GatewayError
from app.core.logging import get_logger
from app.models.enums import PaymentMethod
from app.schemas.payment import PaymentAttempt, PaymentResult, WebhookEvent

logger = get_logger(__name__)


class PaymentGateway(ABC):
    """
    Adapter for one payment provider.

    Implementations never raise for provider declines or transport problems;
    they return ``PaymentResult(success=False, error=...)`` instead.
    """

    name: str = "gateway"
    methods: FrozenSet[PaymentMethod] = frozenset()

    @abstractmethod
    async def process_payment(self, attempt: PaymentAttempt) -> PaymentResult:
        """Move ``attempt.amount`` from the payer to us"""

    @abstractmethod
    async def refund(
        self,
        payment_id: str,
        amount: Optional[Decimal],
        currency: str,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> PaymentResult:
        """Return money on a captured payment; ``amount=None`` refunds it in full"""

    async def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        """
        Verify a provider notification and normalize it.

        Raises ``WebhookVerificationError`` when the signature does not check
        out; adapters without webhooks raise ``ConfigurationError``.
        """
        raise ConfigurationError(f"{self.name} does not deliver webhooks", gateway=self.name)


class GatewayRegistry:
    """Maps payment methods to gateway adapters and bounds every call with a timeout"""

    def __init__(self, gateways: Iterable[PaymentGateway] = (), timeout_seconds: float = 30.0):
        self.timeout_seconds = timeout_seconds
        self._by_method: Dict[PaymentMethod, PaymentGateway] = {}
        self._by_name: Dict[str, PaymentGateway] = {}
        for gateway in gateways:
            self.register(gateway)

    def register(self, gateway: PaymentGateway) -> None:
        self._by_name[gateway.name] = gateway
        for method in gateway.methods:
            self._by_method[method] = gateway

    def get(self, method: PaymentMethod) -> PaymentGateway:
        gateway = self._by_method.get(PaymentMethod(method))
        if gateway is None:
            raise ConfigurationError(
                f"No payment gateway configured for {PaymentMethod(method).value}",
                payment_method=PaymentMethod(method).value,
            )
        return gateway

    def provider(self, name: str) -> PaymentGateway:
        """Gateway by provider name, for inbound webhooks"""
        gateway = self._by_name.get(name)
        if gateway is None:
            raise ConfigurationError(f"Payment provider {name} is not configured", gateway=name)
        return gateway

    @property
    def methods(self) -> FrozenSet[PaymentMethod]:
        return frozenset(self._by_method)

    def supports(self, method: PaymentMethod) -> bool:
        return PaymentMethod(method) in self._by_method

    async def process_payment(self, attempt: PaymentAttempt) -> PaymentResult:
        gateway = self.get(attempt.payment_method)
        return await self._bounded(
            gateway, gateway.process_payment(attempt), attempt.amount, attempt.currency
        )

    async def refund(
        self,
        method: PaymentMethod,
        payment_id: str,
        amount: Optional[Decimal],
        currency: str,
        reason: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> PaymentResult:
        gateway = self.get(method)
        return await self._bounded(
            gateway,
            gateway.refund(payment_id, amount, currency, reason=reason, idempotency_key=idempotency_key),
            amount if amount is not None else Decimal("0.00"),
            currency,
        )

    async def _bounded(
        self,
        gateway: PaymentGateway,
        call: Awaitable[PaymentResult],
        amount: Decimal,
        currency: str,
    ) -> PaymentResult:
        try:
            return await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "Payment gateway timed out",
                extra={"gateway": gateway.name, "timeout_seconds": self.timeout_seconds},
            )
            return PaymentResult.failed(
                amount, currency, f"{gateway.name} did not respond within {self.timeout_seconds:g}s"
            )
        except GatewayError as e:
            logger.warning("Payment gateway error", extra=e.to_log_extra())
            return PaymentResult.failed(amount, currency, e.message)


def build_gateway_registry(settings) -> GatewayRegistry:
    """
    Registry for the configured providers. Manual methods are always
    available; card and wallet adapters only when their credentials are set.
    """
    from app.services.gateways.manual import ManualGateway
    from app.services.gateways.paypal_gateway import PayPalGateway
    from app.services.gateways.stripe_gateway import StripeGateway

    registry = GatewayRegistry([ManualGateway()], timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS)
    if settings.STRIPE_SECRET_KEY:
        registry.register(
            StripeGateway(
                api_key=settings.STRIPE_SECRET_KEY,
                webhook_secret=settings.STRIPE_WEBHOOK_SECRET or None,
                # Must stay below the registry timeout
                request_timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS * 0.8,
            )
        )
    if settings.PAYPAL_CLIENT_ID and settings.PAYPAL_CLIENT_SECRET:
        registry.register(
            PayPalGateway(
                client_id=settings.PAYPAL_CLIENT_ID,
                client_secret=settings.PAYPAL_CLIENT_SECRET,
                base_url=settings.paypal_base_url,
                timeout_seconds=settings.GATEWAY_TIMEOUT_SECONDS,
                webhook_id=settings.PAYPAL_WEBHOOK_ID or None,
            )
        )
    logger.info(
        "Payment gateways configured",
        extra={"methods": sorted(m.value for m in registry.methods)},
    )
    return registry
