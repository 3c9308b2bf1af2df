"""Event tasks for applying real-time provider events."""

import asyncio

from inboxsync_worker.celery_app import app


@app.task(name="events.dispatch", bind=True, max_retries=5)
def dispatch(self, event: dict) -> dict:
    """Apply one inbound provider event to the local mirror.

    The event is parsed into its typed form and routed under its chat or
    message lock. Changes are committed before any backfill is enqueued, so
    the backfill task always sees the connected account.

    Args:
        event: Raw event payload with a ``type`` discriminator.

    Returns:
        Dictionary with the dispatch result.
    """
    from pydantic import ValidationError

    from inboxsync_core.config import get_settings
    from inboxsync_core.domain.errors import AccountNotFound
    from inboxsync_core.domain.schemas.events import parse_event
    from inboxsync_core.domain.services.event_router import EventRouter
    from inboxsync_core.infra.db import get_sync_session_factory
    from inboxsync_core.observability import sync_context
    from inboxsync_worker.util.runtime import (
        build_blob_storage,
        build_enrichment,
        build_lock,
        build_provider,
    )

    try:
        parsed = parse_event(event)
    except ValidationError as e:
        return {
            "status": "error",
            "task_type": "dispatch",
            "event_type": event.get("type") if isinstance(event, dict) else None,
            "error_type": "invalid_event",
            "error": str(e),
        }

    settings = get_settings()
    session_factory = get_sync_session_factory()
    session = session_factory()
    pending_backfills: list[tuple[str, str]] = []

    try:
        provider_adapter = build_provider(settings)
        router = EventRouter(
            session,
            provider_adapter,
            keyed_lock=build_lock(settings),
            blob_storage=build_blob_storage(settings),
            scheduler=lambda account: pending_backfills.append(
                (account.external_account_id, account.provider)
            ),
            enrichment=build_enrichment(session, provider_adapter, settings),
        )

        with sync_context(
            account_id=parsed.account_id,
            provider=parsed.provider,
            event_type=parsed.type,
        ):
            result = asyncio.run(router.dispatch(parsed))

        session.commit()

    except AccountNotFound as e:
        session.rollback()
        return {
            "status": "error",
            "task_type": "dispatch",
            "event_type": parsed.type,
            "error_type": "account_not_found",
            "error": str(e),
        }
    except Exception as e:
        session.rollback()
        raise self.retry(exc=e)
    finally:
        session.close()

    backfill_task_ids = []
    for external_account_id, provider in pending_backfills:
        task = app.send_task(
            "ingest.backfill_account",
            args=[external_account_id, provider],
            queue="ingest",
        )
        backfill_task_ids.append(task.id)

    return {
        **result.to_dict(),
        "status": "success",
        "task_type": "dispatch",
        "dispatch_status": result.status,
        "backfill_task_ids": backfill_task_ids,
    }
