"""Payment provider webhooks

Authenticated by the provider's signature rather than a bearer token, and
exempt from rate limiting since providers retry on any error.
"""

from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.rate_limit import limiter
from app.schemas.payment import WebhookOutcome
from app.schemas.responses import SuccessResponse
from app.services.webhook_service import WebhookService

router = APIRouter()


@router.post("/stripe", response_model=SuccessResponse[WebhookOutcome])
@limiter.exempt
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(deps.get_db),
    webhooks: WebhookService = Depends(deps.get_webhook_service),
) -> Any:
    outcome = await webhooks.handle(db, "stripe", await request.body(), request.headers)
    return SuccessResponse(data=outcome, message=f"Event {outcome.result.value}")


@router.post("/paypal", response_model=SuccessResponse[WebhookOutcome])
@limiter.exempt
async def paypal_webhook(
    request: Request,
    db: AsyncSession = Depends(deps.get_db),
    webhooks: WebhookService = Depends(deps.get_webhook_service),
) -> Any:
    outcome = await webhooks.handle(db, "paypal", await request.body(), request.headers)
    return SuccessResponse(data=outcome, message=f"Event {outcome.result.value}")
