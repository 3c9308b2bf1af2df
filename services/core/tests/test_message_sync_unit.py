"""Unit tests for real-time message handling.

Tests cover:
1. Chat, contact, attendee and message creation from one event
2. Replay idempotency
3. Outgoing-ownership resolution
4. Message type inference
5. Attachment failures never lose the message
6. Read / edit / delete point operations
"""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from inboxsync_core.domain.models import Attachment, Attendee, Chat, Contact, Message
from inboxsync_core.domain.schemas.events import parse_event
from inboxsync_core.domain.services.message_sync import (
    GROUP_CHAT_NAME,
    MessageSyncService,
    infer_message_type,
    provider_message_fields,
    resolve_outgoing,
)
from inboxsync_core.providers.base import ProviderAttachment, ProviderMessage
from inboxsync_core.providers.unipile import ProviderAPIError


def received(**overrides):
    payload = {
        "type": "message_received",
        "account_id": "acc_1",
        "provider": "LINKEDIN",
        "message_id": "msg_1",
        "chat_id": "chat_1",
        "sender": {"attendee_provider_id": "alice", "attendee_name": "Alice Smith"},
        "attendees": [
            {"attendee_provider_id": "alice", "attendee_name": "Alice Smith"},
            {"attendee_provider_id": "owner_1", "attendee_name": "Olivia Owner"},
        ],
        "message": "Hello!",
        "timestamp": "2024-05-02T10:00:00Z",
    }
    payload.update(overrides)
    return parse_event(payload)


@pytest.fixture
def service(db_session, mock_provider):
    mock_provider.get_profile.side_effect = ProviderAPIError("lookup disabled in tests", 404)
    return MessageSyncService(db_session, mock_provider)


class TestInferMessageType:
    def test_explicit_type_wins(self):
        assert infer_message_type("VIDEO", "hi", []) == "video"

    def test_text(self):
        assert infer_message_type(None, "hi", [ProviderAttachment(type="img")]) == "text"

    def test_attachment_only(self):
        assert infer_message_type(None, None, [ProviderAttachment(type="img")]) == "image"
        assert infer_message_type(None, "", [ProviderAttachment(type="audio")]) == "audio"
        assert infer_message_type(None, None, [ProviderAttachment(type="file")]) == "attachment"

    def test_empty_message(self):
        assert infer_message_type(None, None, []) == "text"


class TestResolveOutgoing:
    def test_explicit_indicator_wins(self):
        assert resolve_outgoing(False, "owner_1", {"owner_1"}) is False
        assert resolve_outgoing(True, "alice", {"owner_1"}) is True

    def test_falls_back_to_owner_comparison(self):
        assert resolve_outgoing(None, "owner_1", {"owner_1", "acc_1"}) is True
        assert resolve_outgoing(None, "alice", {"owner_1", "acc_1"}) is False

    def test_no_owner_known(self):
        assert resolve_outgoing(None, None, set()) is False


class TestProviderMessageFields:
    def test_sender_in_owner_ids_is_outgoing(self):
        message = ProviderMessage(
            external_id="m1", chat_id="c1", sender_id="acc_1", sent_at=None, content="hi"
        )

        fields = provider_message_fields(message, {"acc_1", "owner_1"})

        assert fields["is_outgoing"] is True
        assert fields["type"] == "text"
        assert fields["structured_metadata"] == {"attachments_count": 0}


class TestHandleMessageReceived:
    """Tests for the message_received pipeline."""

    @pytest.mark.asyncio
    async def test_creates_chat_contact_attendee_message(self, db_session, service, account):
        result = await service.handle_message_received(account, received())

        assert result.created is True
        chat = db_session.query(Chat).one()
        assert chat.external_id == "chat_1"
        assert chat.name == "Alice Smith"
        assert chat.type == "direct"
        assert chat.last_activity_at == datetime(2024, 5, 2, 10, 0)

        message = db_session.query(Message).one()
        assert message.content == "Hello!"
        assert message.chat_id == chat.id
        assert message.is_outgoing is False
        assert message.is_read is False

    @pytest.mark.asyncio
    async def test_owner_is_not_a_contact(self, db_session, service, account):
        await service.handle_message_received(account, received())

        contacts = db_session.query(Contact).all()
        assert [c.external_id for c in contacts] == ["alice"]
        attendees = db_session.query(Attendee).all()
        assert [a.external_participant_id for a in attendees] == ["alice"]
        assert attendees[0].contact_id == contacts[0].id

    @pytest.mark.asyncio
    async def test_self_flagged_attendee_is_skipped(self, db_session, service, account):
        account.owner_provider_id = None
        event = received(attendees=[
            {"attendee_provider_id": "alice", "attendee_name": "Alice"},
            {"attendee_provider_id": "me", "attendee_name": "Me", "is_self": True},
        ])

        await service.handle_message_received(account, event)

        assert [c.external_id for c in db_session.query(Contact).all()] == ["alice"]

    @pytest.mark.asyncio
    async def test_owner_from_account_info_before_any_backfill(self, db_session, service, account):
        """The webhook's account_info identifies the owner when the account has none stored."""
        account.owner_provider_id = None
        db_session.flush()
        event = received(
            sender={"attendee_provider_id": "owner_1", "attendee_name": "Olivia Owner"},
            account_info={"feature": "messaging", "type": "linkedin", "user_id": "owner_1"},
        )

        result = await service.handle_message_received(account, event)

        assert [c.external_id for c in db_session.query(Contact).all()] == ["alice"]
        assert [a.external_participant_id for a in db_session.query(Attendee).all()] == ["alice"]
        assert result.message.is_outgoing is True
        assert account.owner_provider_id == "owner_1"

    @pytest.mark.asyncio
    async def test_account_info_does_not_replace_stored_owner(self, db_session, service, account):
        event = received(account_info={"user_id": "someone_else"})

        await service.handle_message_received(account, event)

        assert account.owner_provider_id == "owner_1"

    @pytest.mark.asyncio
    async def test_unknown_owner_sender_is_incoming(self, db_session, service, account):
        account.owner_provider_id = None
        db_session.flush()

        result = await service.handle_message_received(account, received())

        assert result.message.is_outgoing is False

    @pytest.mark.asyncio
    async def test_replay_is_idempotent(self, db_session, service, account):
        """Replaying the same event leaves one row per entity."""
        await service.handle_message_received(account, received())
        result = await service.handle_message_received(account, received())

        assert result.created is False
        assert db_session.query(Chat).count() == 1
        assert db_session.query(Contact).count() == 1
        assert db_session.query(Attendee).count() == 1
        assert db_session.query(Message).count() == 1

    @pytest.mark.asyncio
    async def test_replay_does_not_unread(self, db_session, service, account):
        await service.handle_message_received(account, received())
        service.mark_read(account, "msg_1")

        await service.handle_message_received(account, received())

        assert db_session.query(Message).one().is_read is True

    @pytest.mark.asyncio
    async def test_group_chat_name(self, db_session, service, account):
        await service.handle_message_received(account, received(is_group=True))

        chat = db_session.query(Chat).one()
        assert chat.name == GROUP_CHAT_NAME
        assert chat.type == "group"

    @pytest.mark.asyncio
    async def test_existing_chat_name_untouched(self, db_session, service, account):
        db_session.add(Chat(account_id=account.id, external_id="chat_1", name="Renamed"))
        db_session.flush()

        await service.handle_message_received(account, received())

        assert db_session.query(Chat).one().name == "Renamed"

    @pytest.mark.asyncio
    async def test_older_event_keeps_newer_activity(self, db_session, service, account):
        await service.handle_message_received(account, received())
        await service.handle_message_received(
            account, received(message_id="msg_0", timestamp="2024-05-01T09:00:00Z")
        )

        assert db_session.query(Chat).one().last_activity_at == datetime(2024, 5, 2, 10, 0)

    @pytest.mark.asyncio
    async def test_outgoing_by_owner_fallback(self, db_session, service, account):
        event = received(sender={"attendee_provider_id": "owner_1", "attendee_name": "Olivia"})

        await service.handle_message_received(account, event)

        assert db_session.query(Message).one().is_outgoing is True

    @pytest.mark.asyncio
    async def test_explicit_is_sender_wins(self, db_session, service, account):
        event = received(
            is_sender=False,
            sender={"attendee_provider_id": "owner_1", "attendee_name": "Olivia"},
        )

        await service.handle_message_received(account, event)

        assert db_session.query(Message).one().is_outgoing is False

    @pytest.mark.asyncio
    async def test_attachment_failure_keeps_message(self, db_session, service, account):
        service.attachments.process = AsyncMock(side_effect=RuntimeError("pipeline exploded"))
        event = received(attachments=[{"id": "att_1", "type": "img"}])

        result = await service.handle_message_received(account, event)

        assert result.attachments_failed == 1
        assert db_session.query(Message).count() == 1

    @pytest.mark.asyncio
    async def test_attachment_download_failure_stores_metadata(
        self, db_session, service, mock_provider, account
    ):
        mock_provider.get_message_attachment.side_effect = ProviderAPIError("gone", 404)
        event = received(message=None, attachments=[
            {"id": "att_1", "type": "img", "file_name": "photo.png"},
        ])

        result = await service.handle_message_received(account, event)

        attachment = db_session.query(Attachment).one()
        assert attachment.filename == "photo.png"
        assert attachment.inline_content is None
        assert result.attachments_processed == 1
        assert db_session.query(Message).one().type == "image"


class TestPointOperations:
    """Tests for read / edit / delete."""

    @pytest.mark.asyncio
    async def test_mark_read_is_partial(self, db_session, service, account):
        await service.handle_message_received(account, received())

        message = service.mark_read(account, "msg_1")

        assert message.is_read is True
        assert message.content == "Hello!"
        assert message.sent_at == datetime(2024, 5, 2, 10, 0)

    @pytest.mark.asyncio
    async def test_apply_edit(self, db_session, service, account):
        await service.handle_message_received(account, received())

        message = service.apply_edit(account, "msg_1", "Hello, edited")

        assert message.content == "Hello, edited"
        assert message.is_edited is True

    @pytest.mark.asyncio
    async def test_mark_deleted_keeps_row(self, db_session, service, account):
        await service.handle_message_received(account, received())

        message = service.mark_deleted(account, "msg_1")

        assert message.is_deleted is True
        assert db_session.query(Message).count() == 1

    def test_unknown_message_is_noop(self, db_session, service, account):
        assert service.mark_read(account, "missing") is None
        assert db_session.query(Message).count() == 0
