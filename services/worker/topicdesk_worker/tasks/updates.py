"""Update handling tasks.

Each webhook delivery becomes one task. Handling is at-most-once: a
delivery that fails part way is logged and dropped, never replayed,
because replaying would duplicate messages already relayed.
"""

import asyncio
from typing import Any

from topicdesk_worker.celery_app import app


@app.task(
    name="updates.handle",
    bind=True,
    max_retries=0,  # At-most-once: no automatic retries for this task
    acks_late=False,  # Acknowledge immediately to prevent redelivery
)
def handle(self, payload: dict[str, Any]) -> dict:
    """Run one raw Bot API update through the dispatcher.

    Args:
        payload: The update as received by the webhook.

    Returns:
        Dictionary with status and the classified event kind.
    """
    # Import here to avoid circular imports
    import pydantic

    from topicdesk_core.config import get_settings
    from topicdesk_core.domain.services.dispatcher import UpdateDispatcher
    from topicdesk_core.infra.db import get_sync_session_factory
    from topicdesk_core.providers.telegram import TelegramBotClient
    from topicdesk_core.providers.telegram.schemas import Update

    try:
        update = Update.model_validate(payload)
    except pydantic.ValidationError as e:
        return {"status": "error", "error": f"Malformed update: {e.error_count()} errors"}

    settings = get_settings()
    session_factory = get_sync_session_factory()
    session = session_factory()

    try:
        client = TelegramBotClient(
            token=settings.bot_token,
            base_url=settings.telegram_api_base,
            timeout=settings.telegram_timeout_seconds,
        )
        dispatcher = UpdateDispatcher(db=session, transport=client, settings=settings)
        kind = asyncio.run(dispatcher.dispatch(update))
        return {
            "status": "ok",
            "update_id": update.update_id,
            "event_kind": kind.value,
        }
    finally:
        session.close()
