"""Telegram webhook route.

Provides:
- POST /telegram/webhook - Accept one update and hand it to the worker

The route only authenticates and enqueues. All handling happens in the
``updates.handle`` Celery task so the platform gets its acknowledgement
without waiting on outbound API calls.
"""

from typing import Annotated, Any, Optional

import pydantic
from fastapi import APIRouter, Body, Header, HTTPException, status
from pydantic import BaseModel

from topicdesk_core.api.deps import CeleryDep, SettingsDep
from topicdesk_core.observability import EventContext, get_logger
from topicdesk_core.providers.telegram.schemas import Update

logger = get_logger(__name__)

router = APIRouter(prefix="/telegram", tags=["telegram"])

UPDATE_TASK_NAME = "updates.handle"
UPDATE_QUEUE = "updates"


class WebhookAck(BaseModel):
    """Acknowledgement returned to the platform."""

    ok: bool = True


@router.post("/webhook", response_model=WebhookAck)
async def receive_update(
    payload: Annotated[dict[str, Any], Body()],
    settings: SettingsDep,
    celery_app: CeleryDep,
    secret_token: Annotated[
        Optional[str], Header(alias="X-Telegram-Bot-Api-Secret-Token")
    ] = None,
) -> WebhookAck:
    """Receive one webhook delivery.

    Raises:
        HTTPException: 403 if a webhook secret is configured and the
            request does not carry it.
    """
    if settings.webhook_secret and secret_token != settings.webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid webhook secret",
        )

    try:
        update = Update.model_validate(payload)
    except pydantic.ValidationError as e:
        logger.warning("Discarding malformed update", errors=e.error_count())
        return WebhookAck()

    context = EventContext(update_id=update.update_id)
    try:
        celery_app.send_task(UPDATE_TASK_NAME, args=[payload], queue=UPDATE_QUEUE)
    except Exception as e:
        # Acknowledge anyway; redelivery would not help a broken broker
        logger.error(f"Failed to enqueue update: {e}", context=context, exc_info=True)
        return WebhookAck()

    logger.debug("Update enqueued", context=context)
    return WebhookAck()
