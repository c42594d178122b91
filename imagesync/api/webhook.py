"""Inbound Baserow webhook endpoint."""

from __future__ import annotations

import json
import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from pydantic import ValidationError

from imagesync.api.deps import get_settings, get_trigger
from imagesync.config import Settings
from imagesync.schemas.sync import WebhookAck, WebhookEvent
from imagesync.services.auth_service import WEBHOOK_SIGNATURE_HEADER, verify_webhook_signature
from imagesync.services.trigger_service import TriggerService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


async def _process_event(trigger: TriggerService, event: WebhookEvent) -> None:
    """Background task body; failures are logged, never raised to the client."""
    try:
        summary = await trigger.handle_event(event)
    except Exception:
        logger.exception(
            "Error processing webhook %s for table %d", event.event_type, event.table_id
        )
        return
    logger.info(
        "Webhook %s processed: %d rows, %d images processed, %d failed",
        event.event_type,
        summary.rows_processed,
        summary.images_processed,
        summary.images_failed,
    )


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    settings: Annotated[Settings, Depends(get_settings)],
    trigger: Annotated[TriggerService, Depends(get_trigger)],
) -> WebhookAck:
    """Verify the signature over the raw body, then handle the event in the background."""
    body = await request.body()
    signature = request.headers.get(WEBHOOK_SIGNATURE_HEADER)
    if not verify_webhook_signature(body, signature, settings.webhook_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature"
        )

    try:
        event = WebhookEvent.model_validate(json.loads(body))
    except (ValueError, ValidationError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid webhook body: {exc}"
        ) from exc

    background_tasks.add_task(_process_event, trigger, event)
    return WebhookAck(received=True, event_type=event.event_type)
