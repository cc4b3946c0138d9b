"""API Dependencies"""

from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.config import settings
from app.core.security import BILLING_ADMIN_ROLE, decode_token
from app.database import get_db  # noqa: F401
from app.schemas.auth import Principal
from app.services.billing_service import BillingService
from app.services.gateways.base import GatewayRegistry, build_gateway_registry
from app.services.invoice_lifecycle import InvoiceLifecycleManager
from app.services.late_fee_service import LateFeeService
from app.services.payment_service import PaymentService
from app.services.reminder_service import ReminderService
from app.services.webhook_service import WebhookService

# Security scheme for bearer token
security = HTTPBearer()


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """
    Resolve the caller from a JWT access token.

    Raises:
        HTTPException: If the token is invalid, expired or not an access token
    """
    payload = decode_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"},
        )

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Principal(subject=str(subject), role=payload.get("role"))


async def require_billing_admin(
    principal: Principal = Depends(get_current_principal),
) -> Principal:
    """Billing routes move money; only billing admins may call them."""
    if principal.role != BILLING_ADMIN_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions",
        )
    return principal


@lru_cache
def get_gateway_registry() -> GatewayRegistry:
    return build_gateway_registry(settings)


def get_lifecycle_manager(
    gateways: GatewayRegistry = Depends(get_gateway_registry),
) -> InvoiceLifecycleManager:
    return InvoiceLifecycleManager(gateways)


def get_billing_service(
    lifecycle: InvoiceLifecycleManager = Depends(get_lifecycle_manager),
) -> BillingService:
    return BillingService(lifecycle)


def get_payment_service(
    gateways: GatewayRegistry = Depends(get_gateway_registry),
) -> PaymentService:
    return PaymentService(gateways)


def get_late_fee_service(
    lifecycle: InvoiceLifecycleManager = Depends(get_lifecycle_manager),
) -> LateFeeService:
    return LateFeeService(lifecycle)


def get_reminder_service() -> ReminderService:
    return ReminderService()


def get_webhook_service(
    gateways: GatewayRegistry = Depends(get_gateway_registry),
    lifecycle: InvoiceLifecycleManager = Depends(get_lifecycle_manager),
) -> WebhookService:
    return WebhookService(gateways, lifecycle)
