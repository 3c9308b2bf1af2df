"""Bulk message import.

Imports an already-fetched batch of raw provider messages for one account.
The batch is split into fixed-size chunks; messages within a chunk are
processed concurrently. Chat linkage is best-effort and a message whose chat
is not mirrored yet is stored with no chat.

Usage:
    importer = BulkMessageImporter(db, provider, chunk_size=100)

    result = await importer.import_messages(account, raw_messages)
    print(f"{result.created} created, {result.updated} updated, {result.failed} failed")
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.orm import Session

from inboxsync_core.domain.errors import PerAttachmentFailure
from inboxsync_core.domain.models import Account
from inboxsync_core.domain.services.attachment import AttachmentPipeline
from inboxsync_core.domain.services.enrichment import ContactEnrichmentResolver
from inboxsync_core.domain.services.message_sync import (
    owner_identities,
    provider_message_fields,
)
from inboxsync_core.domain.services.upsert import UpsertService
from inboxsync_core.infrastructure.blob_storage import BlobStorage
from inboxsync_core.providers.base import ProviderAdapter, ProviderMessage
from inboxsync_core.providers.fields import parse_message

logger = logging.getLogger(__name__)


DEFAULT_CHUNK_SIZE = 100


@dataclass
class BulkImportResult:
    """Counts for one bulk import."""

    total: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "created": self.created,
            "updated": self.updated,
            "failed": self.failed,
            "errors": self.errors[:20],
        }


def basic_sender_contact(message: ProviderMessage) -> dict[str, Any]:
    """Contact fields from the sender details embedded in a raw message."""
    sender = (message.raw_data or {}).get("sender") or {}
    first_name = sender.get("first_name")
    last_name = sender.get("last_name")

    full_name = (
        sender.get("display_name")
        or sender.get("name")
        or (f"{first_name} {last_name}" if first_name and last_name else None)
        or message.sender_name
        or message.sender_urn
    )

    return {
        "full_name": full_name,
        "first_name": first_name,
        "last_name": last_name,
        "headline": sender.get("headline"),
        "avatar_url": sender.get("profile_picture_url") or sender.get("avatar_url"),
        "profile_url": sender.get("profile_url"),
    }


class BulkMessageImporter:
    """Chunked, concurrent import of raw provider messages."""

    def __init__(
        self,
        db: Session,
        provider: ProviderAdapter,
        blob_storage: Optional[BlobStorage] = None,
        enrichment: Optional[ContactEnrichmentResolver] = None,
        enable_enrichment: bool = True,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")

        self.db = db
        self.provider = provider
        self.chunk_size = chunk_size
        self.upserts = UpsertService(db)
        self.enrichment = enrichment or ContactEnrichmentResolver(
            db, provider, enabled=enable_enrichment
        )
        self.attachments = AttachmentPipeline(db, provider, blob_storage)

    async def import_messages(
        self,
        account: Account,
        raw_messages: list[dict[str, Any]],
    ) -> BulkImportResult:
        """Import a batch of raw messages.

        Per-message failures are counted and never abort the batch.
        """
        result = BulkImportResult(total=len(raw_messages))

        for start in range(0, len(raw_messages), self.chunk_size):
            chunk = raw_messages[start:start + self.chunk_size]
            outcomes = await asyncio.gather(
                *(self._import_one(account, raw) for raw in chunk),
                return_exceptions=True,
            )

            for raw, outcome in zip(chunk, outcomes):
                if isinstance(outcome, Exception):
                    message_id = raw.get("id") or raw.get("message_id")
                    logger.warning(f"Failed to import message {message_id}: {outcome}")
                    result.failed += 1
                    result.errors.append(f"{message_id}: {outcome}")
                elif outcome:
                    result.created += 1
                else:
                    result.updated += 1

            logger.debug(
                f"Bulk import chunk {start // self.chunk_size} done for account {account.id}"
            )

        logger.info(
            f"Bulk import for account {account.id}: {result.created} created, "
            f"{result.updated} updated, {result.failed} failed"
        )
        return result

    async def _import_one(self, account: Account, raw: dict[str, Any]) -> bool:
        message = parse_message(raw)
        if not message.external_id:
            raise ValueError("message has no id")

        fields = provider_message_fields(message, owner_identities(account))
        is_outgoing = fields["is_outgoing"]

        if message.chat_id:
            chat = self.upserts.find_chat(account.id, message.chat_id)
            if chat is not None:
                fields["chat_id"] = chat.id

        stored, created = self.upserts.upsert_message(account.id, message.external_id, **fields)

        if not is_outgoing and message.sender_id:
            await self.enrichment.upsert_contact_for_identity(
                account,
                message.sender_id,
                fallback=basic_sender_contact(message),
            )

        for index, descriptor in enumerate(message.attachments):
            try:
                await self.attachments.process(
                    stored, descriptor, index, account.external_account_id
                )
            except Exception as e:
                logger.error(f"{PerAttachmentFailure(descriptor.external_id or str(index), e)}")

        return created
