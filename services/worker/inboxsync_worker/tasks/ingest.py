"""Ingest tasks for mirroring provider history."""

import asyncio
import logging

from inboxsync_worker.celery_app import app

logger = logging.getLogger(__name__)


@app.task(
    name="ingest.backfill_account",
    bind=True,
    max_retries=3,
    soft_time_limit=3600,
    time_limit=3900,
)
def backfill_account(self, account_id: str, provider: str) -> dict:
    """Backfill chat, attendee and message history for one account.

    Progress is committed after every chat page. Re-running the task after a
    crash re-upserts what is already mirrored and continues from there.

    Args:
        account_id: Provider-side account identifier.
        provider: Provider name, e.g. "LINKEDIN".

    Returns:
        Dictionary with the backfill counters.
    """
    from inboxsync_core.config import get_settings
    from inboxsync_core.domain.errors import ConnectivityFailure
    from inboxsync_core.domain.services.ingest import IngestService
    from inboxsync_core.domain.services.sync_state import SyncStateTracker
    from inboxsync_core.domain.services.upsert import UpsertService
    from inboxsync_core.infra.db import get_sync_session_factory
    from inboxsync_core.observability import sync_context
    from inboxsync_worker.util.runtime import build_blob_storage, build_enrichment, build_provider

    settings = get_settings()
    session_factory = get_sync_session_factory()
    session = session_factory()

    try:
        account = UpsertService(session).find_account(account_id, provider)
        if account is None:
            return {
                "status": "error",
                "account_id": account_id,
                "task_type": "backfill_account",
                "error_type": "account_not_found",
                "error": f"Account not found: {account_id} ({provider})",
            }

        limits = settings.sync_limits()
        provider_adapter = build_provider(settings)
        ingest = IngestService(
            session,
            provider_adapter,
            limits,
            blob_storage=build_blob_storage(settings),
            enrichment=build_enrichment(session, provider_adapter, settings),
            checkpoint=session.commit,
        )

        try:
            with sync_context(account_id=account_id, provider=provider):
                result = asyncio.run(ingest.backfill_account(account))
            session.commit()
        except ConnectivityFailure as e:
            session.commit()
            return {
                "status": "error",
                "account_id": account_id,
                "task_type": "backfill_account",
                "error_type": "connectivity_failure",
                "error": str(e),
            }
        except Exception as e:
            session.rollback()
            SyncStateTracker(session).fail(account.id, provider, str(e))
            session.commit()
            raise self.retry(exc=e)

        return {
            "status": "success",
            "account_id": account_id,
            "task_type": "backfill_account",
            **result.counters(total_chats=limits.max_chats),
            "chat_pages": result.chat_pages,
            "chat_failures": result.chat_failures,
        }

    finally:
        session.close()


@app.task(name="ingest.bulk_import", bind=True, max_retries=3)
def bulk_import(self, account_id: str, provider: str, messages: list[dict]) -> dict:
    """Import a batch of raw provider messages for one account.

    Args:
        account_id: Provider-side account identifier.
        provider: Provider name.
        messages: Raw message payloads as returned by the provider.

    Returns:
        Dictionary with created/updated/failed counts.
    """
    from inboxsync_core.config import get_settings
    from inboxsync_core.domain.services.bulk_import import BulkMessageImporter
    from inboxsync_core.domain.services.upsert import UpsertService
    from inboxsync_core.infra.db import get_sync_session_factory
    from inboxsync_core.observability import sync_context
    from inboxsync_worker.util.runtime import build_blob_storage, build_enrichment, build_provider

    settings = get_settings()
    session_factory = get_sync_session_factory()
    session = session_factory()

    try:
        account = UpsertService(session).find_account(account_id, provider)
        if account is None:
            return {
                "status": "error",
                "account_id": account_id,
                "task_type": "bulk_import",
                "error_type": "account_not_found",
                "error": f"Account not found: {account_id} ({provider})",
            }

        provider_adapter = build_provider(settings)
        importer = BulkMessageImporter(
            session,
            provider_adapter,
            blob_storage=build_blob_storage(settings),
            enrichment=build_enrichment(session, provider_adapter, settings),
            chunk_size=settings.bulk_import_chunk_size,
        )

        with sync_context(account_id=account_id, provider=provider):
            result = asyncio.run(importer.import_messages(account, messages))

        session.commit()

        return {
            "status": "success",
            "account_id": account_id,
            "task_type": "bulk_import",
            **result.to_dict(),
        }

    except Exception as e:
        session.rollback()
        logger.error(f"Bulk import failed for account {account_id}: {e}")
        raise self.retry(exc=e)
    finally:
        session.close()
