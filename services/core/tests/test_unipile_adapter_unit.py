"""Unit tests for the Unipile provider adapter.

httpx.AsyncClient is patched; each test asserts the request that was made
and the normalized DTOs that came back.
"""

import base64
from unittest.mock import MagicMock

import httpx
import pytest

from inboxsync_core.providers.unipile import ProviderAPIError, UnipileAdapter


def json_response(data: dict, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = data
    return response


@pytest.fixture
def adapter():
    return UnipileAdapter(api_key="test-key", dsn="api1.unipile.com:13111", timeout=5.0)


class TestUnipileAdapter:
    """Tests for request shaping and response parsing."""

    def test_base_url(self, adapter):
        assert adapter.base_url == "https://api1.unipile.com:13111/api/v1"
        assert adapter.provider_id == "unipile"

    @pytest.mark.asyncio
    async def test_list_chats(self, adapter, mock_httpx_client):
        mock_httpx_client.request.return_value = json_response({
            "items": [
                {"id": "chat_1", "type": 0, "name": "Alice", "unread_count": 2},
                {"id": "chat_2", "type": 1, "organization_id": "org_1"},
            ],
            "cursor": "abc",
        })

        page = await adapter.list_chats("acc_1", limit=10)

        method, url = mock_httpx_client.request.await_args.args
        kwargs = mock_httpx_client.request.await_args.kwargs
        assert method == "GET"
        assert url == "https://api1.unipile.com:13111/api/v1/chats"
        assert kwargs["params"] == {"account_id": "acc_1", "limit": 10}
        assert kwargs["headers"]["X-API-KEY"] == "test-key"

        assert [chat.external_id for chat in page.items] == ["chat_1", "chat_2"]
        assert page.items[0].unread_count == 2
        assert page.items[1].type == "group"
        assert page.next_cursor == "abc"
        assert page.has_more is True

    @pytest.mark.asyncio
    async def test_list_chat_messages(self, adapter, mock_httpx_client):
        mock_httpx_client.request.return_value = json_response({
            "items": [{"id": "m1", "text": "Hi", "sender_id": "alice", "is_sender": 0}],
            "cursor": None,
        })

        page = await adapter.list_chat_messages("chat_1", "acc_1", cursor="c1", limit=5)

        assert mock_httpx_client.request.await_args.kwargs["params"] == {
            "account_id": "acc_1",
            "cursor": "c1",
            "limit": 5,
        }
        [message] = page.items
        assert message.chat_id == "chat_1"
        assert message.content == "Hi"
        assert message.is_sender is False
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_error_status_raises(self, adapter, mock_httpx_client):
        mock_httpx_client.request.return_value = json_response({}, status_code=404)

        with pytest.raises(ProviderAPIError) as exc_info:
            await adapter.get_profile("ACoAAB1", "acc_1")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_connectivity_failure_does_not_raise(self, adapter, mock_httpx_client):
        mock_httpx_client.request.side_effect = httpx.ConnectError("refused")

        result = await adapter.test_connectivity("acc_1")

        assert result.connected is False
        assert "refused" in result.error

    @pytest.mark.asyncio
    async def test_connectivity_success(self, adapter, mock_httpx_client):
        mock_httpx_client.request.return_value = json_response({"id": "acc_1", "status": "OK"})

        result = await adapter.test_connectivity("acc_1")

        assert result.connected is True
        assert result.account_info["status"] == "OK"

    @pytest.mark.asyncio
    async def test_attachment_download(self, adapter, mock_httpx_client):
        response = MagicMock()
        response.status_code = 200
        response.content = b"binary"
        response.headers = {"content-type": "image/png; charset=binary"}
        mock_httpx_client.request.return_value = response

        content = await adapter.get_message_attachment("m1", "att_1", "acc_1")

        assert content.content_base64 == base64.b64encode(b"binary").decode("ascii")
        assert content.mime_type == "image/png"
        assert mock_httpx_client.request.await_args.args[1].endswith("/messages/m1/attachments/att_1")

    @pytest.mark.asyncio
    async def test_own_profile(self, adapter, mock_httpx_client):
        mock_httpx_client.request.return_value = json_response({
            "provider_id": "owner_1",
            "first_name": "Olivia",
        })

        profile = await adapter.get_own_profile("acc_1")

        assert profile.external_id == "owner_1"
        assert mock_httpx_client.request.await_args.args[1].endswith("/users/me")
