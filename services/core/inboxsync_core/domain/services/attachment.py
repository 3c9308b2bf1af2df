"""Attachment persistence pipeline.

Each attachment descriptor is persisted with the strongest guarantee that
succeeds:

1. Unavailable descriptor -> metadata only, no download attempted
2. Download + blob upload -> blob reference, no inline content
3. Download, upload fails -> inline base64 content, no blob reference
4. Download fails -> metadata only

A failing step degrades to the next one; the row is never dropped. The
real-time handler and the historical backfill both go through process(),
so the same descriptor always yields the same row shape.

Usage:
    pipeline = AttachmentPipeline(db, provider, blob_storage)

    result = await pipeline.process(message, descriptor, index=0, provider_account_id="acc_1")
    print(result.outcome)  # "blob", "inline", "metadata" or "unavailable"
"""

import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from inboxsync_core.domain.errors import PerAttachmentFailure
from inboxsync_core.domain.models import Attachment, Message
from inboxsync_core.domain.services.upsert import UpsertService
from inboxsync_core.infrastructure.blob_storage import BlobStorage, generate_attachment_key
from inboxsync_core.providers.base import (
    AttachmentContent,
    ProviderAdapter,
    ProviderAttachment,
)

logger = logging.getLogger(__name__)


class AttachmentOutcome(str):
    """How an attachment ended up persisted."""

    BLOB = "blob"
    INLINE = "inline"
    METADATA = "metadata"
    UNAVAILABLE = "unavailable"


@dataclass
class AttachmentResult:
    """Result of processing one attachment descriptor."""

    attachment: Attachment
    outcome: str
    created: bool


def fallback_attachment_id(message_external_id: str, index: int) -> str:
    """Stable id for descriptors the provider sent without one."""
    return f"{message_external_id}_{index}"


def attachment_metadata(descriptor: ProviderAttachment) -> dict[str, Any]:
    """Descriptor fields persisted regardless of download outcome."""
    flags = {
        "sticker": descriptor.sticker,
        "gif": descriptor.gif,
        "voice_note": descriptor.voice_note,
    }
    return {
        "type": descriptor.type or "file",
        "url": descriptor.url,
        "filename": descriptor.filename,
        "size_bytes": descriptor.size_bytes,
        "mime_type": descriptor.mime_type,
        "unavailable": descriptor.unavailable,
        "width_px": descriptor.width,
        "height_px": descriptor.height,
        "duration_seconds": descriptor.duration,
        "flags": flags if any(flags.values()) else None,
    }


class AttachmentPipeline:
    """Download, upload and persist attachments with graceful degradation."""

    def __init__(
        self,
        db: Session,
        provider: ProviderAdapter,
        blob_storage: Optional[BlobStorage] = None,
    ):
        """Initialize the pipeline.

        Args:
            db: SQLAlchemy database session.
            provider: Provider adapter used to download attachment content.
            blob_storage: Durable store for binaries. Without one, downloaded
                content is kept inline.
        """
        self.db = db
        self.provider = provider
        self.blob_storage = blob_storage
        self.upserts = UpsertService(db)

    async def process(
        self,
        message: Message,
        descriptor: ProviderAttachment,
        index: int,
        provider_account_id: str,
    ) -> AttachmentResult:
        """Persist one attachment of a stored message.

        Args:
            message: The already-persisted message row.
            descriptor: Normalized attachment descriptor.
            index: Position of the attachment within the message.
            provider_account_id: Upstream account id used for the download.

        Returns:
            AttachmentResult with the row and how it was persisted.
        """
        downloadable = descriptor.external_id is not None
        external_id = descriptor.external_id or fallback_attachment_id(message.external_id, index)
        fields = attachment_metadata(descriptor)

        if descriptor.unavailable:
            logger.info(f"Attachment {external_id} marked unavailable, storing metadata only")
            return self._persist(message, external_id, fields, AttachmentOutcome.UNAVAILABLE)

        if not downloadable:
            logger.info(f"Attachment {external_id} has no provider id, storing metadata only")
            return self._persist(message, external_id, fields, AttachmentOutcome.METADATA)

        content = await self._download(message, external_id, provider_account_id)
        if content is None:
            return self._persist(message, external_id, fields, AttachmentOutcome.METADATA)

        mime_type = descriptor.mime_type or content.mime_type
        if mime_type:
            fields["mime_type"] = mime_type
            blob = await self._upload(message, external_id, descriptor.filename, mime_type, content)
            if blob is not None:
                blob_key, blob_url = blob
                fields.update(
                    blob_key=blob_key,
                    blob_url=blob_url,
                    blob_uploaded_at=datetime.utcnow(),
                )
                return self._persist(message, external_id, fields, AttachmentOutcome.BLOB)

        fields["inline_content"] = content.content_base64
        return self._persist(message, external_id, fields, AttachmentOutcome.INLINE)

    async def _download(
        self,
        message: Message,
        external_id: str,
        provider_account_id: str,
    ) -> Optional[AttachmentContent]:
        try:
            content = await self.provider.get_message_attachment(
                message.external_id,
                external_id,
                provider_account_id,
            )
        except Exception as e:
            failure = PerAttachmentFailure(external_id, e)
            logger.warning(f"{failure}; download failed, storing metadata only")
            return None

        if not content or not content.content_base64:
            logger.warning(f"Attachment {external_id} downloaded empty, storing metadata only")
            return None
        return content

    async def _upload(
        self,
        message: Message,
        external_id: str,
        filename: Optional[str],
        mime_type: str,
        content: AttachmentContent,
    ) -> Optional[tuple[str, str]]:
        if self.blob_storage is None:
            return None

        key = generate_attachment_key(message.id, filename, mime_type)
        try:
            data = base64.b64decode(content.content_base64, validate=True)
            url = await self.blob_storage.upload(
                key,
                data,
                mime_type,
                {"message_id": str(message.id), "attachment_id": external_id},
            )
        except (binascii.Error, ValueError) as e:
            logger.warning(f"{PerAttachmentFailure(external_id, e)}; content is not valid base64")
            return None
        except Exception as e:
            failure = PerAttachmentFailure(external_id, e)
            logger.warning(f"{failure}; upload failed, keeping content inline")
            return None

        return key, url

    def _persist(
        self,
        message: Message,
        external_id: str,
        fields: dict[str, Any],
        outcome: str,
    ) -> AttachmentResult:
        attachment, created = self.upserts.upsert_attachment(message.id, external_id, **fields)
        logger.debug(f"Stored attachment {external_id} for message {message.external_id} ({outcome})")
        return AttachmentResult(attachment=attachment, outcome=outcome, created=created)
