"""Unit tests for the attachment persistence pipeline.

Each descriptor ends in exactly one of:
1. blob reference (download + upload succeed)
2. inline content (upload fails or no storage configured)
3. metadata only (download fails, no id, or descriptor unavailable)
"""

import base64
from unittest.mock import AsyncMock

import pytest

from inboxsync_core.domain.models import Attachment, Message
from inboxsync_core.domain.services.attachment import (
    AttachmentOutcome,
    AttachmentPipeline,
    attachment_metadata,
    fallback_attachment_id,
)
from inboxsync_core.infrastructure.blob_storage import BlobStorageError
from inboxsync_core.providers.base import AttachmentContent, ProviderAttachment
from inboxsync_core.providers.unipile import ProviderAPIError

PNG_BASE64 = base64.b64encode(b"\x89PNG fake image").decode("ascii")


@pytest.fixture
def message(db_session, account):
    message = Message(account_id=account.id, external_id="msg_1", content="see attached")
    db_session.add(message)
    db_session.flush()
    return message


@pytest.fixture
def blob_storage():
    storage = AsyncMock()
    storage.upload.return_value = "https://blobs.example/attachments/1/abc123.png"
    return storage


@pytest.fixture
def image_descriptor():
    return ProviderAttachment(
        external_id="att_1",
        type="img",
        filename="photo.png",
        mime_type="image/png",
        width=640,
        height=480,
    )


class TestHelpers:
    def test_fallback_attachment_id(self):
        assert fallback_attachment_id("msg_1", 2) == "msg_1_2"

    def test_flags_only_when_set(self):
        assert attachment_metadata(ProviderAttachment())["flags"] is None
        assert attachment_metadata(ProviderAttachment(gif=True))["flags"] == {
            "sticker": False,
            "gif": True,
            "voice_note": False,
        }


class TestAttachmentPipeline:
    """Tests for the degradation ladder."""

    @pytest.mark.asyncio
    async def test_blob_upload(self, db_session, mock_provider, blob_storage, message, image_descriptor):
        mock_provider.get_message_attachment.return_value = AttachmentContent(
            content_base64=PNG_BASE64, mime_type="image/png"
        )
        pipeline = AttachmentPipeline(db_session, mock_provider, blob_storage)

        result = await pipeline.process(message, image_descriptor, 0, "acc_1")

        assert result.outcome == AttachmentOutcome.BLOB
        assert result.attachment.blob_url == "https://blobs.example/attachments/1/abc123.png"
        assert result.attachment.blob_key.startswith(f"attachments/{message.id}/")
        assert result.attachment.inline_content is None
        assert result.attachment.width_px == 640

        key, data, mime_type, metadata = blob_storage.upload.await_args.args
        assert data == b"\x89PNG fake image"
        assert mime_type == "image/png"
        assert metadata["attachment_id"] == "att_1"

    @pytest.mark.asyncio
    async def test_upload_failure_keeps_inline(
        self, db_session, mock_provider, blob_storage, message, image_descriptor
    ):
        mock_provider.get_message_attachment.return_value = AttachmentContent(
            content_base64=PNG_BASE64
        )
        blob_storage.upload.side_effect = BlobStorageError("disk full")
        pipeline = AttachmentPipeline(db_session, mock_provider, blob_storage)

        result = await pipeline.process(message, image_descriptor, 0, "acc_1")

        assert result.outcome == AttachmentOutcome.INLINE
        assert result.attachment.inline_content == PNG_BASE64
        assert result.attachment.blob_url is None

    @pytest.mark.asyncio
    async def test_no_storage_keeps_inline(self, db_session, mock_provider, message, image_descriptor):
        mock_provider.get_message_attachment.return_value = AttachmentContent(
            content_base64=PNG_BASE64
        )
        pipeline = AttachmentPipeline(db_session, mock_provider, blob_storage=None)

        result = await pipeline.process(message, image_descriptor, 0, "acc_1")

        assert result.outcome == AttachmentOutcome.INLINE

    @pytest.mark.asyncio
    async def test_unknown_mime_type_keeps_inline(self, db_session, mock_provider, blob_storage, message):
        mock_provider.get_message_attachment.return_value = AttachmentContent(
            content_base64=PNG_BASE64
        )
        pipeline = AttachmentPipeline(db_session, mock_provider, blob_storage)

        result = await pipeline.process(message, ProviderAttachment(external_id="att_2"), 0, "acc_1")

        assert result.outcome == AttachmentOutcome.INLINE
        blob_storage.upload.assert_not_called()

    @pytest.mark.asyncio
    async def test_download_failure_stores_metadata(
        self, db_session, mock_provider, blob_storage, message, image_descriptor
    ):
        mock_provider.get_message_attachment.side_effect = ProviderAPIError("gone", 404)
        pipeline = AttachmentPipeline(db_session, mock_provider, blob_storage)

        result = await pipeline.process(message, image_descriptor, 0, "acc_1")

        assert result.outcome == AttachmentOutcome.METADATA
        assert result.attachment.filename == "photo.png"
        assert result.attachment.inline_content is None
        assert result.attachment.blob_url is None

    @pytest.mark.asyncio
    async def test_unavailable_skips_download(self, db_session, mock_provider, blob_storage, message):
        pipeline = AttachmentPipeline(db_session, mock_provider, blob_storage)
        descriptor = ProviderAttachment(external_id="att_3", unavailable=True)

        result = await pipeline.process(message, descriptor, 0, "acc_1")

        assert result.outcome == AttachmentOutcome.UNAVAILABLE
        assert result.attachment.unavailable is True
        mock_provider.get_message_attachment.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_id_uses_fallback(self, db_session, mock_provider, message):
        pipeline = AttachmentPipeline(db_session, mock_provider)

        result = await pipeline.process(message, ProviderAttachment(type="file"), 1, "acc_1")

        assert result.outcome == AttachmentOutcome.METADATA
        assert result.attachment.external_id == "msg_1_1"
        mock_provider.get_message_attachment.assert_not_called()

    @pytest.mark.asyncio
    async def test_reprocessing_updates_same_row(
        self, db_session, mock_provider, message, image_descriptor
    ):
        mock_provider.get_message_attachment.return_value = AttachmentContent(
            content_base64=PNG_BASE64
        )
        pipeline = AttachmentPipeline(db_session, mock_provider)

        first = await pipeline.process(message, image_descriptor, 0, "acc_1")
        second = await pipeline.process(message, image_descriptor, 0, "acc_1")

        assert first.created is True
        assert second.created is False
        assert db_session.query(Attachment).filter_by(message_id=message.id).count() == 1
