"""Real-time message handling.

Processes one inbound message event end to end:

1. Resolve-or-create the Chat and advance its last activity
2. Resolve-or-create a Contact and Attendee for every non-owner participant
3. Classify and upsert the Message
4. Run each attachment through the AttachmentPipeline

The message row is durable before attachments are processed, so an
attachment failure never loses the message.

Also provides the point operations used by read, edit and delete events.
Each is a partial patch; an unknown message is a logged no-op.

Usage:
    service = MessageSyncService(db, provider, blob_storage=storage)

    result = await service.handle_message_received(account, event)
    service.mark_read(account, "msg_123")
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.orm import Session

from inboxsync_core.domain.errors import PerAttachmentFailure
from inboxsync_core.domain.models import Account, Chat, ChatType, Message, MessageType
from inboxsync_core.domain.schemas.events import MessageReceivedEvent
from inboxsync_core.domain.services.attachment import AttachmentPipeline
from inboxsync_core.domain.services.enrichment import ContactEnrichmentResolver
from inboxsync_core.domain.services.upsert import UpsertService
from inboxsync_core.infrastructure.blob_storage import BlobStorage
from inboxsync_core.providers.base import ProviderAdapter, ProviderAttachment, ProviderMessage

logger = logging.getLogger(__name__)


GROUP_CHAT_NAME = "Group Chat"
UNKNOWN_CONTACT_NAME = "Unknown Contact"

ATTACHMENT_KIND_TO_MESSAGE_TYPE = {
    "img": MessageType.IMAGE,
    "image": MessageType.IMAGE,
    "video": MessageType.VIDEO,
    "audio": MessageType.AUDIO,
}


def infer_message_type(
    explicit_type: Optional[str],
    content: Optional[str],
    attachments: list[ProviderAttachment],
) -> str:
    """Classify a message.

    An explicit type wins. Otherwise attachment-only messages take their
    type from the first attachment's kind, and everything else is text.
    """
    if explicit_type:
        return explicit_type.lower()

    if not content and attachments:
        kind = (attachments[0].type or "").lower()
        return ATTACHMENT_KIND_TO_MESSAGE_TYPE.get(kind, MessageType.ATTACHMENT)

    return MessageType.TEXT


def resolve_outgoing(
    is_sender: Optional[bool],
    sender_id: Optional[str],
    owner_ids: set[str],
) -> bool:
    """Whether the owner sent the message.

    Falls back to comparing the sender with the owner's identities only when
    the provider gave no explicit indicator.
    """
    if is_sender is not None:
        return is_sender
    return sender_id is not None and sender_id in owner_ids


def provider_message_fields(message: ProviderMessage, owner_ids: set[str]) -> dict[str, Any]:
    """Message fields for a message fetched from the provider API.

    Used by the backfill and the bulk importer so both classify messages
    the same way as real-time events.
    """
    if message.is_sender is not None:
        is_outgoing = message.is_sender
    else:
        is_outgoing = message.sender_id in owner_ids

    metadata = {
        "attachments_count": len(message.attachments),
        "subject": message.subject,
        "quoted": message.quoted,
        "reactions": message.reactions,
        "reply_to": message.reply_to,
    }

    return {
        "sender_id": message.sender_id,
        "content": message.content or None,
        "type": infer_message_type(message.message_type, message.content, message.attachments),
        "is_read": message.is_read,
        "is_outgoing": is_outgoing,
        "sent_at": message.sent_at,
        "structured_metadata": {k: v for k, v in metadata.items() if v is not None},
    }


def owner_identities(account: Account) -> set[str]:
    """Provider ids that identify the account owner as a sender."""
    return {account.owner_provider_id, account.external_account_id} - {None}


@dataclass
class MessageSyncResult:
    """Result of handling one message_received event."""

    message: Message
    chat: Chat
    created: bool
    attachments_processed: int = 0
    attachments_failed: int = 0
    attachment_errors: list[str] = field(default_factory=list)


class MessageSyncService:
    """Applies real-time message events to the local mirror."""

    def __init__(
        self,
        db: Session,
        provider: ProviderAdapter,
        blob_storage: Optional[BlobStorage] = None,
        enrichment: Optional[ContactEnrichmentResolver] = None,
        enable_enrichment: bool = True,
    ):
        """Initialize the message sync service.

        Args:
            db: SQLAlchemy database session.
            provider: Provider adapter for attachments and profile lookups.
            blob_storage: Optional durable store for attachment binaries.
            enrichment: Contact resolver; built from the provider if omitted.
            enable_enrichment: Whether the default resolver performs lookups.
        """
        self.db = db
        self.provider = provider
        self.upserts = UpsertService(db)
        self.enrichment = enrichment or ContactEnrichmentResolver(
            db, provider, enabled=enable_enrichment
        )
        self.attachments = AttachmentPipeline(db, provider, blob_storage)

    # =========================================================================
    # MESSAGE RECEIVED
    # =========================================================================

    async def handle_message_received(
        self,
        account: Account,
        event: MessageReceivedEvent,
    ) -> MessageSyncResult:
        """Mirror one received message."""
        if event.owner_provider_id and not account.owner_provider_id:
            account.owner_provider_id = event.owner_provider_id
            self.db.flush()
            logger.info(f"Learned owner {event.owner_provider_id} for account {account.id}")

        owner_ids = owner_identities(account)
        if event.owner_provider_id:
            owner_ids.add(event.owner_provider_id)
        attachments = event.provider_attachments()

        # Step 1: chat
        chat = self._resolve_chat(account, event)

        # Step 2: participants
        for attendee in event.attendees:
            if attendee.is_self or attendee.provider_id in owner_ids:
                continue

            contact = await self.enrichment.upsert_contact_for_identity(
                account,
                attendee.provider_id,
                fallback={
                    "full_name": attendee.name,
                    "profile_url": attendee.profile_url,
                    "avatar_url": attendee.avatar_url,
                },
            )
            self.upserts.upsert_attendee(
                chat.id,
                attendee.provider_id,
                contact_id=contact.id,
                is_self=False,
                hidden=False,
            )

        # Step 3: message
        metadata = {
            "provider_message_id": event.message_id,
            "attachments_count": len(attachments),
        }
        if event.quoted:
            metadata["quoted"] = event.quoted
        if event.subject:
            metadata["subject"] = event.subject

        message, created = self.upserts.upsert_message(
            account.id,
            event.message_id,
            chat_id=chat.id,
            sender_id=event.sender.provider_id,
            content=event.content or None,
            type=infer_message_type(event.message_type, event.content, attachments),
            is_outgoing=resolve_outgoing(event.is_sender, event.sender.provider_id, owner_ids),
            sent_at=event.timestamp,
            structured_metadata=metadata,
        )

        result = MessageSyncResult(message=message, chat=chat, created=created)

        # Step 4: attachments
        for index, descriptor in enumerate(attachments):
            try:
                await self.attachments.process(
                    message, descriptor, index, account.external_account_id
                )
                result.attachments_processed += 1
            except Exception as e:
                failure = PerAttachmentFailure(descriptor.external_id or str(index), e)
                logger.error(f"{failure} (message {event.message_id})")
                result.attachments_failed += 1
                result.attachment_errors.append(str(failure))

        logger.info(
            f"Synced message {event.message_id} in chat {event.chat_id} "
            f"(created={created}, attachments={result.attachments_processed}, "
            f"failed={result.attachments_failed})"
        )
        return result

    def _resolve_chat(self, account: Account, event: MessageReceivedEvent) -> Chat:
        existing = self.upserts.find_chat(account.id, event.chat_id)
        if existing is not None:
            chat, _ = self.upserts.upsert_chat(
                account.id, event.chat_id, last_activity_at=event.timestamp
            )
            return chat

        if event.is_group:
            name, chat_type = GROUP_CHAT_NAME, ChatType.GROUP
        else:
            name, chat_type = event.sender.name or UNKNOWN_CONTACT_NAME, ChatType.DIRECT

        chat, _ = self.upserts.upsert_chat(
            account.id,
            event.chat_id,
            name=name,
            type=chat_type,
            last_activity_at=event.timestamp,
        )
        return chat

    # =========================================================================
    # POINT OPERATIONS
    # =========================================================================

    def mark_read(self, account: Account, message_external_id: str) -> Optional[Message]:
        return self._patch_existing(account, message_external_id, "read", is_read=True)

    def apply_edit(
        self,
        account: Account,
        message_external_id: str,
        new_content: Optional[str],
    ) -> Optional[Message]:
        return self._patch_existing(
            account, message_external_id, "edit", content=new_content, is_edited=True
        )

    def mark_deleted(self, account: Account, message_external_id: str) -> Optional[Message]:
        return self._patch_existing(account, message_external_id, "delete", is_deleted=True)

    def _patch_existing(
        self,
        account: Account,
        message_external_id: str,
        operation: str,
        **fields,
    ) -> Optional[Message]:
        if self.upserts.find_message(account.id, message_external_id) is None:
            logger.info(
                f"Ignoring {operation} for unknown message {message_external_id} "
                f"on account {account.id}"
            )
            return None

        message, _ = self.upserts.upsert_message(account.id, message_external_id, **fields)
        return message
