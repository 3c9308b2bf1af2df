"""Celery application configuration for Inboxsync Worker."""

import logging

from celery import Celery

from inboxsync_core.config import get_settings
from inboxsync_core.observability import configure_logging

settings = get_settings()

configure_logging(
    level=settings.log_level,
    json_format=settings.log_json,
    service_name="inboxsync-worker",
)

logger = logging.getLogger(__name__)

if settings.keyed_lock_backend == "local":
    logger.warning(
        "KEYED_LOCK_BACKEND=local: same-chat events are only ordered within one "
        "process; run a single worker with concurrency 1 or use the redis backend"
    )

app = Celery(
    "inboxsync_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "inboxsync_worker.tasks.events",
        "inboxsync_worker.tasks.ingest",
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
    # At-least-once: a task is acked only after it finishes, and redelivered
    # if the worker dies mid-run. Handlers are idempotent.
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Time limits (seconds)
    task_soft_time_limit=300,  # 5 minutes
    task_time_limit=600,  # 10 minutes
    # Retry settings
    task_default_retry_delay=60,  # 1 minute
    task_max_retries=10,
    # Queue routing
    task_routes={
        "events.*": {"queue": "events"},
        "ingest.*": {"queue": "ingest"},
    },
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
    worker_hijack_root_logger=False,
)


if __name__ == "__main__":
    app.start()
