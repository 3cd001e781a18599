"""Topicdesk Worker Tasks."""

# Import all tasks to register them with Celery
from topicdesk_worker.tasks import updates  # noqa: F401
