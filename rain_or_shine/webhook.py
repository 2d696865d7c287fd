"""
Strava Webhook Router

Subscription verification and push event intake. The POST handler answers
200 for every request; see services/webhook_service.py.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import settings
from .deps import get_webhook_service
from .schemas import StravaWebhookEvent
from .services.webhook_service import WebhookService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/webhook")
def verify_webhook(
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    """
    Subscription handshake. Strava checks the echoed challenge programmatically.
    """
    expected_token = settings.STRAVA_WEBHOOK_VERIFY_TOKEN

    if hub_mode == "subscribe" and expected_token and hub_verify_token == expected_token:
        logger.info("Webhook verification successful")
        return {"hub.challenge": hub_challenge}

    logger.warning(
        f"Webhook verification failed: mode_valid={hub_mode == 'subscribe'}, "
        f"token_valid={bool(expected_token) and hub_verify_token == expected_token}"
    )
    return JSONResponse(status_code=403, content={"error": "Verification failed"})


@router.post("/webhook")
async def handle_webhook_event(
    request: Request,
    webhooks: WebhookService = Depends(get_webhook_service),
):
    # The time budget counts from request arrival
    started_at = webhooks.now()

    try:
        body = await request.json()
        event = StravaWebhookEvent(**body)
    except (ValueError, TypeError, ValidationError) as e:
        logger.warning(f"Invalid webhook event received: {e}")
        return {"message": "Invalid event acknowledged"}

    logger.info(
        f"Webhook event: type={event.object_type}, aspect={event.aspect_type}, "
        f"object_id={event.object_id}, owner_id={event.owner_id}, "
        f"subscription_id={event.subscription_id}, event_time={event.event_time}"
    )

    try:
        return await webhooks.handle_event(event, started_at)
    except Exception as e:
        # Anything unexpected still gets a 200 so Strava does not redeliver
        logger.error(f"Error processing webhook event {event.object_id}: {e}", exc_info=True)
        return {"message": "Event acknowledged"}


@router.get("/webhook/status")
def webhook_status():
    """Diagnostic view of the webhook configuration."""
    configured = bool(settings.STRAVA_WEBHOOK_VERIFY_TOKEN)
    return {
        "configured": configured,
        "endpoint": f"{settings.APP_URL.rstrip('/')}/api/strava/webhook",
        "verifyTokenSet": configured,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
