"""Inbound event routing.

Resolves the local account for an event and dispatches it to the matching
handler. Every handler is idempotent, so redelivered events converge on the
same state.

Ordering:
- message_received runs under the chat:{chat_id} lock
- read/edit/delete/reaction run under the message:{message_id} lock
- account and profile events run unkeyed

Usage:
    router = EventRouter(db, provider, keyed_lock=LocalKeyedLock(), scheduler=enqueue_backfill)

    result = await router.dispatch(parse_event(payload))
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from inboxsync_core.domain.errors import AccountNotFound
from inboxsync_core.domain.models import Account, AccountStatus, ProfileView
from inboxsync_core.domain.schemas.events import (
    AccountConnectedEvent,
    AccountDisconnectedEvent,
    AccountStatusEvent,
    InboundEvent,
    MessageDeletedEvent,
    MessageEditedEvent,
    MessageReactionEvent,
    MessageReadEvent,
    MessageReceivedEvent,
    ProfileViewEvent,
)
from inboxsync_core.domain.services.enrichment import ContactEnrichmentResolver
from inboxsync_core.domain.services.message_sync import MessageSyncService
from inboxsync_core.domain.services.upsert import UpsertService
from inboxsync_core.infrastructure.blob_storage import BlobStorage
from inboxsync_core.infrastructure.keyed_lock import (
    KeyedLock,
    LocalKeyedLock,
    chat_lock_key,
    message_lock_key,
)
from inboxsync_core.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)


BackfillScheduler = Callable[[Account], None]


class DispatchStatus(str):
    """Outcome of dispatching one event."""

    PROCESSED = "processed"
    IGNORED = "ignored"


@dataclass
class DispatchResult:
    """Result of dispatching one event."""

    event_type: str
    status: str
    account_id: Optional[int] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "status": self.status,
            "account_id": self.account_id,
            **self.details,
        }


def lock_key_for(event: InboundEvent) -> Optional[str]:
    """The keyed-lock key an event runs under, or None for unkeyed events."""
    if isinstance(event, MessageReceivedEvent):
        return chat_lock_key(event.chat_id)
    if isinstance(
        event,
        (MessageReadEvent, MessageEditedEvent, MessageDeletedEvent, MessageReactionEvent),
    ):
        return message_lock_key(event.message_id)
    return None


class EventRouter:
    """Dispatches typed inbound events to their handlers."""

    def __init__(
        self,
        db: Session,
        provider: ProviderAdapter,
        keyed_lock: Optional[KeyedLock] = None,
        blob_storage: Optional[BlobStorage] = None,
        scheduler: Optional[BackfillScheduler] = None,
        enrichment: Optional[ContactEnrichmentResolver] = None,
        enable_enrichment: bool = True,
    ):
        """Initialize the router.

        Args:
            db: SQLAlchemy database session.
            provider: Provider adapter for attachment downloads and profile lookups.
            keyed_lock: Per-chat / per-message single-flight lock.
            blob_storage: Optional durable store for attachment binaries.
            scheduler: Called with a newly connected account to start its backfill.
            enrichment: Contact resolver; built from the provider if omitted.
            enable_enrichment: Whether the default resolver performs lookups.
        """
        self.db = db
        self.keyed_lock = keyed_lock or LocalKeyedLock()
        self.scheduler = scheduler
        self.upserts = UpsertService(db)
        self.enrichment = enrichment or ContactEnrichmentResolver(
            db, provider, enabled=enable_enrichment
        )
        self.messages = MessageSyncService(
            db, provider, blob_storage=blob_storage, enrichment=self.enrichment
        )

        self._handlers = {
            "message_received": self._handle_message_received,
            "message_read": self._handle_message_read,
            "message_edited": self._handle_message_edited,
            "message_deleted": self._handle_message_deleted,
            "message_reaction": self._handle_message_reaction,
            "account_status": self._handle_account_status,
            "account_connected": self._handle_account_connected,
            "account_disconnected": self._handle_account_disconnected,
            "profile_view": self._handle_profile_view,
        }

    async def dispatch(self, event: InboundEvent) -> DispatchResult:
        """Route one event to its handler under the event's lock key.

        Raises:
            AccountNotFound: If the event's account has no local mirror.
        """
        handler = self._handlers[event.type]

        async with self.keyed_lock.hold(lock_key_for(event)):
            logger.debug(f"Dispatching {event.type} for account {event.account_id}")
            return await handler(event)

    def resolve_account(
        self,
        external_account_id: str,
        provider: str,
        include_deleted: bool = False,
    ) -> Account:
        account = self.upserts.find_account(
            external_account_id, provider, include_deleted=include_deleted
        )
        if account is None:
            raise AccountNotFound(external_account_id, provider)
        return account

    # =========================================================================
    # MESSAGE EVENTS
    # =========================================================================

    async def _handle_message_received(self, event: MessageReceivedEvent) -> DispatchResult:
        account = self.resolve_account(event.account_id, event.provider)
        result = await self.messages.handle_message_received(account, event)

        return DispatchResult(
            event_type=event.type,
            status=DispatchStatus.PROCESSED,
            account_id=account.id,
            details={
                "message_id": result.message.id,
                "chat_id": result.chat.id,
                "created": result.created,
                "attachments_processed": result.attachments_processed,
                "attachments_failed": result.attachments_failed,
            },
        )

    async def _handle_message_read(self, event: MessageReadEvent) -> DispatchResult:
        account = self.resolve_account(event.account_id, event.provider)
        message = self.messages.mark_read(account, event.message_id)
        return self._point_result(event.type, account, message)

    async def _handle_message_edited(self, event: MessageEditedEvent) -> DispatchResult:
        account = self.resolve_account(event.account_id, event.provider)
        message = self.messages.apply_edit(account, event.message_id, event.new_content)
        return self._point_result(event.type, account, message)

    async def _handle_message_deleted(self, event: MessageDeletedEvent) -> DispatchResult:
        account = self.resolve_account(event.account_id, event.provider)
        message = self.messages.mark_deleted(account, event.message_id)
        return self._point_result(event.type, account, message)

    async def _handle_message_reaction(self, event: MessageReactionEvent) -> DispatchResult:
        account = self.resolve_account(event.account_id, event.provider)
        logger.info(
            f"Reaction {event.reaction!r} on message {event.message_id} "
            f"for account {account.id}"
        )
        return DispatchResult(
            event_type=event.type,
            status=DispatchStatus.IGNORED,
            account_id=account.id,
        )

    @staticmethod
    def _point_result(event_type: str, account: Account, message) -> DispatchResult:
        if message is None:
            return DispatchResult(
                event_type=event_type,
                status=DispatchStatus.IGNORED,
                account_id=account.id,
                details={"reason": "message_not_found"},
            )
        return DispatchResult(
            event_type=event_type,
            status=DispatchStatus.PROCESSED,
            account_id=account.id,
            details={"message_id": message.id},
        )

    # =========================================================================
    # ACCOUNT EVENTS
    # =========================================================================

    async def _handle_account_status(self, event: AccountStatusEvent) -> DispatchResult:
        account = self.resolve_account(event.account_id, event.provider, include_deleted=True)
        self.upserts.upsert_account(account.external_account_id, account.provider, status=event.status)
        logger.info(f"Account {account.id} status is now {event.status}")

        return DispatchResult(
            event_type=event.type,
            status=DispatchStatus.PROCESSED,
            account_id=account.id,
            details={"account_status": event.status},
        )

    async def _handle_account_connected(self, event: AccountConnectedEvent) -> DispatchResult:
        fields: dict[str, Any] = {"status": event.status, "deleted_at": None}
        if event.owner is not None:
            fields["owner"] = event.owner

        account, created = self.upserts.upsert_account(event.account_id, event.provider, **fields)
        logger.info(
            f"Account {event.account_id} ({event.provider}) connected "
            f"(created={created}, status={event.status})"
        )

        backfill_scheduled = False
        if event.status == AccountStatus.CONNECTED and self.scheduler is not None:
            self.scheduler(account)
            backfill_scheduled = True

        return DispatchResult(
            event_type=event.type,
            status=DispatchStatus.PROCESSED,
            account_id=account.id,
            details={"created": created, "backfill_scheduled": backfill_scheduled},
        )

    async def _handle_account_disconnected(
        self, event: AccountDisconnectedEvent
    ) -> DispatchResult:
        account = self.resolve_account(event.account_id, event.provider, include_deleted=True)
        self.upserts.upsert_account(
            account.external_account_id,
            account.provider,
            status=AccountStatus.DISCONNECTED,
            deleted_at=account.deleted_at or datetime.utcnow(),
        )
        logger.info(f"Account {account.id} disconnected")

        return DispatchResult(
            event_type=event.type,
            status=DispatchStatus.PROCESSED,
            account_id=account.id,
        )

    # =========================================================================
    # PROFILE VIEWS
    # =========================================================================

    async def _handle_profile_view(self, event: ProfileViewEvent) -> DispatchResult:
        account = self.resolve_account(event.account_id, event.provider)
        viewer = event.viewer
        viewed_at = event.viewed_at or datetime.utcnow()

        view = self.db.query(ProfileView).filter_by(
            account_id=account.id,
            viewer_external_id=viewer.id,
            viewed_at=viewed_at,
        ).first()
        recorded = view is None
        if recorded:
            view = ProfileView(
                account_id=account.id,
                viewer_external_id=viewer.id,
                viewer_name=viewer.name,
                viewer_headline=viewer.headline,
                viewer_avatar_url=viewer.avatar_url,
                viewed_at=viewed_at,
            )
            self.db.add(view)
            self.db.flush()

        if viewer.id:
            await self.enrichment.upsert_contact_for_identity(
                account,
                viewer.id,
                fallback={
                    "full_name": viewer.name,
                    "first_name": viewer.first_name,
                    "last_name": viewer.last_name,
                    "headline": viewer.headline,
                    "avatar_url": viewer.avatar_url,
                    "profile_url": viewer.profile_url,
                },
            )

        return DispatchResult(
            event_type=event.type,
            status=DispatchStatus.PROCESSED,
            account_id=account.id,
            details={"profile_view_id": view.id, "recorded": recorded},
        )
