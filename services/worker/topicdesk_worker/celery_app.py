"""Celery application configuration for Topicdesk Worker."""

import os

from celery import Celery

from topicdesk_core.observability import configure_logging

# Celery configuration from environment
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/2")

configure_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    json_format=os.getenv("LOG_JSON", "true").lower() == "true",
    service_name="topicdesk-worker",
)

app = Celery(
    "topicdesk_worker",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
    include=[
        "topicdesk_worker.tasks.updates",
    ],
)

# Celery configuration
app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Time limits (seconds)
    task_soft_time_limit=60,
    task_time_limit=120,
    # Results are only kept for debugging
    result_expires=3600,
    # Queue routing
    task_routes={
        "topicdesk_worker.tasks.updates.*": {"queue": "updates"},
        "updates.*": {"queue": "updates"},
    },
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
)


if __name__ == "__main__":
    app.start()
