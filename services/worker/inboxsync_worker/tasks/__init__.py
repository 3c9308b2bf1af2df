"""Inboxsync Worker Tasks."""

# Import all tasks to register them with Celery
from inboxsync_worker.tasks import events  # noqa: F401
from inboxsync_worker.tasks import ingest  # noqa: F401
