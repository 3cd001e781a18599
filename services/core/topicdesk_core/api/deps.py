"""API dependencies for dependency injection."""

from typing import Annotated

from celery import Celery
from fastapi import Depends

from topicdesk_core.config import Settings, get_settings


def get_celery_app() -> Celery:
    """Get a Celery app instance for enqueueing work."""
    settings = get_settings()
    return Celery(broker=settings.celery_broker_url, backend=settings.celery_result_backend)


SettingsDep = Annotated[Settings, Depends(get_settings)]
CeleryDep = Annotated[Celery, Depends(get_celery_app)]
