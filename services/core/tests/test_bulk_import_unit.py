"""Unit tests for the bulk message importer."""

import pytest

from inboxsync_core.domain.models import Chat, Contact, Message
from inboxsync_core.domain.services.bulk_import import (
    BulkImportResult,
    BulkMessageImporter,
    basic_sender_contact,
)
from inboxsync_core.providers.fields import parse_message
from inboxsync_core.providers.unipile import ProviderAPIError


def raw_message(message_id: str, **overrides) -> dict:
    raw = {
        "id": message_id,
        "chat_id": "chat_1",
        "sender_id": "alice",
        "text": f"body of {message_id}",
        "timestamp": "2024-05-02T10:00:00Z",
        "sender": {"display_name": "Alice Smith"},
    }
    raw.update(overrides)
    return raw


@pytest.fixture
def importer(db_session, mock_provider):
    mock_provider.get_profile.side_effect = ProviderAPIError("lookup disabled in tests", 404)
    return BulkMessageImporter(db_session, mock_provider, chunk_size=2)


class TestBasicSenderContact:
    def test_display_name(self):
        message = parse_message(raw_message("m1"))

        assert basic_sender_contact(message)["full_name"] == "Alice Smith"

    def test_first_and_last_name(self):
        message = parse_message(raw_message("m1", sender={"first_name": "Bob", "last_name": "Jones"}))

        assert basic_sender_contact(message)["full_name"] == "Bob Jones"

    def test_falls_back_to_sender_name(self):
        message = parse_message(raw_message("m1", sender=None, sender_name="Carol"))

        assert basic_sender_contact(message)["full_name"] == "Carol"


class TestBulkMessageImporter:
    """Tests for chunked import."""

    def test_chunk_size_validated(self, db_session, mock_provider):
        with pytest.raises(ValueError):
            BulkMessageImporter(db_session, mock_provider, chunk_size=0)

    @pytest.mark.asyncio
    async def test_imports_and_counts(self, db_session, importer, account):
        messages = [raw_message(f"m{i}") for i in range(5)]

        result = await importer.import_messages(account, messages)

        assert isinstance(result, BulkImportResult)
        assert result.total == 5
        assert result.created == 5
        assert result.failed == 0
        assert db_session.query(Message).count() == 5

    @pytest.mark.asyncio
    async def test_reimport_updates(self, db_session, importer, account):
        messages = [raw_message("m1"), raw_message("m2")]

        await importer.import_messages(account, messages)
        result = await importer.import_messages(account, messages)

        assert result.created == 0
        assert result.updated == 2
        assert db_session.query(Message).count() == 2

    @pytest.mark.asyncio
    async def test_failures_counted_not_raised(self, db_session, importer, account):
        messages = [raw_message("m1"), {"text": "no id"}, raw_message("m2")]

        result = await importer.import_messages(account, messages)

        assert result.created == 2
        assert result.failed == 1
        assert len(result.errors) == 1

    @pytest.mark.asyncio
    async def test_links_existing_chat(self, db_session, importer, account):
        chat = Chat(account_id=account.id, external_id="chat_1")
        db_session.add(chat)
        db_session.flush()

        await importer.import_messages(account, [raw_message("m1"), raw_message("m2", chat_id="unknown")])

        messages = {m.external_id: m for m in db_session.query(Message).all()}
        assert messages["m1"].chat_id == chat.id
        assert messages["m2"].chat_id is None

    @pytest.mark.asyncio
    async def test_sender_contact_created_for_incoming(self, db_session, importer, account):
        await importer.import_messages(account, [
            raw_message("m1"),
            raw_message("m2", sender_id="owner_1", sender={"display_name": "Olivia"}),
        ])

        contacts = db_session.query(Contact).all()
        assert [c.external_id for c in contacts] == ["alice"]
        assert contacts[0].full_name == "Alice Smith"
        outgoing = db_session.query(Message).filter_by(external_id="m2").one()
        assert outgoing.is_outgoing is True
