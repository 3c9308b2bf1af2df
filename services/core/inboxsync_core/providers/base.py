"""Base provider interface and DTOs.

This module defines the provider-agnostic interface that the messaging
provider adapter must implement, along with normalized data transfer objects.

The DTOs ensure raw payload quirks never reach business logic:
- ProviderChat: Normalized chat/thread data
- ProviderAttendee: Normalized chat participant
- ProviderMessage: Normalized message data
- ProviderAttachment: Normalized attachment descriptor
- ProviderProfile: Normalized user profile data

Usage:
    class UnipileAdapter(ProviderAdapter):
        @property
        def provider_id(self) -> str:
            return "unipile"

        async def list_chats(self, account_id, ...) -> PaginatedResult[ProviderChat]:
            # Implementation
            pass
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class ProviderAttachment:
    """Normalized attachment descriptor.

    The external id may be missing on webhook payloads; callers derive a
    stable fallback id from the message id and the attachment position.
    """

    external_id: Optional[str] = None
    type: str = "file"
    url: Optional[str] = None
    filename: Optional[str] = None
    size_bytes: Optional[int] = None
    mime_type: Optional[str] = None
    unavailable: bool = False

    # Media details
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[int] = None
    sticker: bool = False
    gif: bool = False
    voice_note: bool = False


@dataclass
class ProviderMessage:
    """Normalized message from a provider."""

    external_id: str
    chat_id: Optional[str]
    sender_id: Optional[str]
    sent_at: Optional[datetime]

    # Optional fields
    content: Optional[str] = None
    message_type: Optional[str] = None
    is_sender: Optional[bool] = None  # None when the provider gives no indicator
    is_read: bool = False
    sender_name: Optional[str] = None
    sender_urn: Optional[str] = None
    attachments: list[ProviderAttachment] = field(default_factory=list)
    quoted: Optional[dict] = None
    reactions: Optional[list] = None
    subject: Optional[str] = None
    reply_to: Optional[dict] = None
    raw_data: Optional[dict] = None


@dataclass
class ProviderChat:
    """Normalized chat from a provider."""

    external_id: str
    type: str = "direct"

    # Optional fields
    name: Optional[str] = None
    last_message_at: Optional[datetime] = None
    unread_count: int = 0
    archived: bool = False
    read_only: bool = False
    organization_id: Optional[str] = None
    mailbox: Optional[str] = None
    content_type: Optional[str] = None
    folder: Optional[str] = None
    last_sender_id: Optional[str] = None
    last_sender_urn: Optional[str] = None
    raw_data: Optional[dict] = None


@dataclass
class ProviderAttendee:
    """Normalized chat participant."""

    external_id: str

    # Optional fields
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    profile_url: Optional[str] = None
    is_self: bool = False
    hidden: bool = False
    attendee_type: Optional[str] = None
    headline: Optional[str] = None
    member_urn: Optional[str] = None
    occupation: Optional[str] = None
    location: Optional[str] = None
    network_distance: Optional[str] = None
    pending_invitation: bool = False
    contact_info: Optional[dict] = None
    raw_data: Optional[dict] = None


@dataclass
class ProviderProfile:
    """Normalized user profile from a provider."""

    external_id: str

    # Optional fields
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    headline: Optional[str] = None
    avatar_url: Optional[str] = None
    avatar_url_large: Optional[str] = None
    public_profile_url: Optional[str] = None
    public_identifier: Optional[str] = None
    network_distance: Optional[str] = None
    location: Optional[str] = None
    summary: Optional[str] = None
    contact_info: Optional[dict] = None
    websites: Optional[list] = None
    work_experience: list[dict] = field(default_factory=list)
    raw_data: Optional[dict] = None


@dataclass
class AttachmentContent:
    """Downloaded attachment binary, base64-encoded."""

    content_base64: str
    mime_type: Optional[str] = None


@dataclass
class ConnectivityResult:
    """Outcome of probing an upstream account."""

    connected: bool
    account_info: Optional[dict[str, Any]] = None
    error: Optional[str] = None


# =============================================================================
# PAGINATION
# =============================================================================


T = TypeVar("T")


@dataclass
class PaginatedResult(Generic[T]):
    """Paginated result wrapper.

    Wraps a list of items with cursor-based pagination information.
    """

    items: list[T]
    next_cursor: Optional[str]
    has_more: bool
    total: Optional[int] = None


# =============================================================================
# PROVIDER ADAPTER INTERFACE
# =============================================================================


class ProviderAdapter(ABC):
    """Abstract base class for messaging provider adapters.

    Methods:
        test_connectivity: Probe an upstream account
        list_chats: List an account's chats
        list_chat_attendees: List participants of a chat
        list_chat_messages: List messages in a chat
        get_message_attachment: Download one attachment
        get_profile: Fetch another user's profile
        get_own_profile: Fetch the account owner's profile
    """

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Return the unique provider identifier."""
        ...

    @abstractmethod
    async def test_connectivity(self, account_id: str) -> ConnectivityResult:
        """Check that the upstream account exists and is reachable.

        Never raises for an unreachable account; returns connected=False
        with the error message instead.
        """
        ...

    @abstractmethod
    async def list_chats(
        self,
        account_id: str,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> PaginatedResult[ProviderChat]:
        """List the account's chats.

        Args:
            account_id: Upstream account id.
            cursor: Pagination cursor from previous request.
            limit: Maximum number of chats to return.

        Returns:
            Paginated list of chats.
        """
        ...

    @abstractmethod
    async def list_chat_attendees(
        self,
        chat_id: str,
        account_id: str,
        limit: int = 100,
    ) -> PaginatedResult[ProviderAttendee]:
        """List participants of a chat."""
        ...

    @abstractmethod
    async def list_chat_messages(
        self,
        chat_id: str,
        account_id: str,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> PaginatedResult[ProviderMessage]:
        """List messages in a chat, newest first.

        Args:
            chat_id: External chat id.
            account_id: Upstream account id.
            cursor: Pagination cursor from previous request.
            limit: Maximum number of messages to return.

        Returns:
            Paginated list of messages.
        """
        ...

    @abstractmethod
    async def get_message_attachment(
        self,
        message_id: str,
        attachment_id: str,
        account_id: str,
    ) -> AttachmentContent:
        """Download one attachment's content."""
        ...

    @abstractmethod
    async def get_profile(self, identity: str, account_id: str) -> ProviderProfile:
        """Fetch another user's profile.

        Raises:
            ProviderAPIError: If the lookup fails.
        """
        ...

    @abstractmethod
    async def get_own_profile(self, account_id: str) -> ProviderProfile:
        """Fetch the account owner's own profile."""
        ...
