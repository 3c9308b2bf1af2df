"""Ingestion service for the historical backfill of one account.

Flow:
1. Warm-up delay before the first provider call
2. Start the SyncRun and probe upstream connectivity
3. Page through chats up to the chat ceiling; per chat, sync attendees,
   then messages (nested pages), then attachments
4. Persist progress counters after each chat page
5. Mark the SyncRun completed, or failed on any uncaught error

A fetch failure for one chat's attendees or messages only loses that chat's
missing data; the run continues. Only a connectivity failure or an
unexpected error fails the run.

Cursors are not persisted. A retried run starts over and relies on the
idempotent upserts.

Usage:
    ingest = IngestService(db=session, adapter=provider, limits=settings.sync_limits())

    result = await ingest.backfill_account(account)
    print(result.counters())
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inboxsync_core.config import SyncLimits
from inboxsync_core.domain.errors import ConnectivityFailure, PerAttachmentFailure, PerChatFetchFailure
from inboxsync_core.domain.models import Account, Chat
from inboxsync_core.domain.services.attachment import AttachmentPipeline
from inboxsync_core.domain.services.content_filter import is_org_chat
from inboxsync_core.domain.services.enrichment import ContactEnrichmentResolver
from inboxsync_core.domain.services.message_sync import owner_identities, provider_message_fields
from inboxsync_core.domain.services.sync_state import SyncStateTracker
from inboxsync_core.domain.services.upsert import UpsertService
from inboxsync_core.infrastructure.blob_storage import BlobStorage
from inboxsync_core.providers.base import ProviderAdapter, ProviderChat

logger = logging.getLogger(__name__)


@dataclass
class BackfillResult:
    """Counters for one backfill run."""

    chats_seen: int = 0
    chats_processed: int = 0
    messages_processed: int = 0
    attendees_processed: int = 0
    skipped_org_chats: int = 0
    chat_pages: int = 0
    chat_failures: int = 0

    def counters(self, total_chats: int) -> dict[str, Any]:
        return {
            "chats_seen": self.chats_seen,
            "chats_processed": self.chats_processed,
            "messages_processed": self.messages_processed,
            "attendees_processed": self.attendees_processed,
            "skipped_org_chats": self.skipped_org_chats,
            "total_chats": total_chats,
        }


class IngestService:
    """Historical backfill orchestrator for one account.

    Runs strictly sequentially: one chat page at a time, one chat at a time.
    """

    def __init__(
        self,
        db: Session,
        adapter: ProviderAdapter,
        limits: SyncLimits,
        blob_storage: Optional[BlobStorage] = None,
        enrichment: Optional[ContactEnrichmentResolver] = None,
        enable_enrichment: bool = True,
        checkpoint: Optional[Callable[[], None]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the ingest service.

        Args:
            db: SQLAlchemy database session.
            adapter: Provider adapter for API calls.
            limits: Chat, message and attendee ceilings for the run.
            blob_storage: Optional durable store for attachment binaries.
            enrichment: Contact resolver; built from the adapter if omitted.
            enable_enrichment: Whether the default resolver performs lookups.
            checkpoint: Called after each progress write, e.g. session.commit,
                so pollers see progress while the run is in flight.
            sleep: Coroutine used for the warm-up delay.
        """
        self.db = db
        self.adapter = adapter
        self.limits = limits
        self.checkpoint = checkpoint
        self.sleep = sleep
        self.upserts = UpsertService(db)
        self.tracker = SyncStateTracker(db)
        self.enrichment = enrichment or ContactEnrichmentResolver(
            db, adapter, enabled=enable_enrichment
        )
        self.attachments = AttachmentPipeline(db, adapter, blob_storage)

    # =========================================================================
    # RUN
    # =========================================================================

    async def backfill_account(self, account: Account) -> BackfillResult:
        """Run a full historical backfill.

        Raises:
            ConnectivityFailure: If the upstream account cannot be reached.
        """
        provider = account.provider

        if self.limits.warmup_seconds > 0:
            await self.sleep(self.limits.warmup_seconds)

        self.tracker.start(account.id, provider)
        self._checkpoint()

        try:
            probe = await self.adapter.test_connectivity(account.external_account_id)
            if not probe.connected:
                raise ConnectivityFailure(account.external_account_id, probe.error)

            logger.info(
                f"Account {account.external_account_id} reachable, starting backfill "
                f"(max_chats={self.limits.max_chats}, page_size={self.limits.chat_page_size})"
            )

            result = await self._sync_chats(account)
        except Exception as e:
            self._record_failure(account, e)
            raise

        self.tracker.complete(account.id, provider)
        self._checkpoint()

        logger.info(
            f"Backfill completed for account {account.id}: "
            f"{result.chats_processed} chats, {result.messages_processed} messages, "
            f"{result.attendees_processed} attendees, {result.skipped_org_chats} skipped"
        )
        return result

    async def _sync_chats(self, account: Account) -> BackfillResult:
        result = BackfillResult()
        ceiling = self.limits.max_chats
        cursor: Optional[str] = None

        while result.chats_seen < ceiling:
            page = await self.adapter.list_chats(
                account.external_account_id,
                cursor=cursor,
                limit=min(self.limits.chat_page_size, ceiling - result.chats_seen),
            )
            result.chat_pages += 1

            chats = page.items[: ceiling - result.chats_seen]
            if not chats:
                break

            for provider_chat in chats:
                result.chats_seen += 1

                if is_org_chat(provider_chat) and not self.limits.include_org_content:
                    logger.debug(f"Skipping organization chat {provider_chat.external_id}")
                    result.skipped_org_chats += 1
                    continue

                await self._sync_chat(account, provider_chat, result)
                result.chats_processed += 1

            self.tracker.update_progress(
                account.id,
                account.provider,
                result.counters(total_chats=ceiling),
                current_step=f"chat_page_{result.chat_pages}",
            )
            self._checkpoint()

            if self.limits.stop_after_first_page:
                logger.info("Stopping after the first chat page")
                break

            if not page.next_cursor:
                break
            cursor = page.next_cursor

        return result

    # =========================================================================
    # PER CHAT
    # =========================================================================

    async def _sync_chat(
        self,
        account: Account,
        provider_chat: ProviderChat,
        result: BackfillResult,
    ) -> None:
        metadata = {
            "organization_id": provider_chat.organization_id,
            "mailbox": provider_chat.mailbox,
            "content_type": provider_chat.content_type,
            "folder": provider_chat.folder,
        }
        chat, _ = self.upserts.upsert_chat(
            account.id,
            provider_chat.external_id,
            name=provider_chat.name,
            type=provider_chat.type,
            last_activity_at=provider_chat.last_message_at,
            unread_count=provider_chat.unread_count,
            archived=provider_chat.archived,
            read_only=provider_chat.read_only,
            provider_metadata={k: v for k, v in metadata.items() if v is not None} or None,
        )

        try:
            result.attendees_processed += await self._sync_attendees(account, chat)
        except Exception as e:
            failure = PerChatFetchFailure(chat.external_id, "attendees", e)
            logger.warning(str(failure))
            result.chat_failures += 1

        try:
            result.messages_processed += await self._sync_messages(account, chat)
        except Exception as e:
            failure = PerChatFetchFailure(chat.external_id, "messages", e)
            logger.warning(str(failure))
            result.chat_failures += 1

    async def _sync_attendees(self, account: Account, chat: Chat) -> int:
        page = await self.adapter.list_chat_attendees(
            chat.external_id,
            account.external_account_id,
            limit=self.limits.max_attendees_per_chat,
        )
        owner_ids = owner_identities(account)
        count = 0

        for attendee in page.items[: self.limits.max_attendees_per_chat]:
            if attendee.is_self or attendee.external_id in owner_ids:
                await self.enrichment.refresh_owner_profile(account)
                contact_id = None
            else:
                contact_id = self.enrichment.upsert_contact_from_attendee(account, attendee).id

            self.upserts.upsert_attendee(
                chat.id,
                attendee.external_id,
                contact_id=contact_id,
                is_self=attendee.is_self or attendee.external_id in owner_ids,
                hidden=attendee.hidden,
            )
            count += 1

        return count

    async def _sync_messages(self, account: Account, chat: Chat) -> int:
        owner_ids = owner_identities(account)
        ceiling = self.limits.max_messages_per_chat
        processed = 0
        cursor: Optional[str] = None

        while processed < ceiling:
            page = await self.adapter.list_chat_messages(
                chat.external_id,
                account.external_account_id,
                cursor=cursor,
                limit=min(self.limits.message_batch_size, ceiling - processed),
            )
            messages = page.items[: ceiling - processed]
            if not messages:
                break

            for provider_message in messages:
                fields = provider_message_fields(provider_message, owner_ids)
                message, _ = self.upserts.upsert_message(
                    account.id,
                    provider_message.external_id,
                    chat_id=chat.id,
                    **fields,
                )

                for index, descriptor in enumerate(provider_message.attachments):
                    try:
                        await self.attachments.process(
                            message, descriptor, index, account.external_account_id
                        )
                    except Exception as e:
                        failure = PerAttachmentFailure(descriptor.external_id or str(index), e)
                        logger.warning(f"{failure} (message {provider_message.external_id})")

                processed += 1

            if not page.next_cursor:
                break
            cursor = page.next_cursor

        return processed

    # =========================================================================
    # PRIVATE HELPERS
    # =========================================================================

    def _checkpoint(self) -> None:
        if self.checkpoint is not None:
            self.checkpoint()

    def _record_failure(self, account: Account, error: Exception) -> None:
        logger.error(f"Backfill failed for account {account.id}: {error}")
        try:
            self.tracker.fail(account.id, account.provider, str(error))
            self._checkpoint()
        except SQLAlchemyError as fail_error:
            logger.error(f"Failed to record sync failure for account {account.id}: {fail_error}")
