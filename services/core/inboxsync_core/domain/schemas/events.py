"""Pydantic schemas for inbound provider events.

Every event carries a ``type`` discriminator plus the upstream account id and
provider. Raw participant and attachment payloads are normalized through the
same field-priority lists the provider adapter uses.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from inboxsync_core.providers.base import ProviderAttachment
from inboxsync_core.providers.fields import (
    PARTICIPANT_AVATAR_FIELDS,
    PARTICIPANT_ID_FIELDS,
    PARTICIPANT_NAME_FIELDS,
    PARTICIPANT_PROFILE_URL_FIELDS,
    parse_attachment,
    parse_timestamp,
    pick,
)


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError(f"Invalid timestamp: {value!r}")
    return parsed


# ============================================================================
# Shared pieces
# ============================================================================


class EventParticipant(BaseModel):
    """A message sender or chat attendee as it appears in a webhook."""

    model_config = ConfigDict(extra="allow")

    provider_id: str = Field(..., description="Provider-side participant id")
    name: Optional[str] = None
    profile_url: Optional[str] = None
    avatar_url: Optional[str] = None
    urn: Optional[str] = Field(None, description="Member URN, when the provider sends one")
    is_self: bool = False

    @model_validator(mode="before")
    @classmethod
    def normalize_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        provider_id = pick(data, PARTICIPANT_ID_FIELDS)
        return {
            **data,
            "provider_id": str(provider_id) if provider_id is not None else None,
            "name": pick(data, PARTICIPANT_NAME_FIELDS),
            "profile_url": pick(data, PARTICIPANT_PROFILE_URL_FIELDS),
            "avatar_url": pick(data, PARTICIPANT_AVATAR_FIELDS),
            "urn": data.get("urn") or data.get("attendee_urn") or data.get("member_urn"),
            "is_self": bool(data.get("is_self")),
        }


class EventBase(BaseModel):
    """Fields common to every inbound event."""

    account_id: str = Field(..., description="Upstream account id")
    provider: str = Field(..., description="Upstream provider name")


# ============================================================================
# Message events
# ============================================================================


class MessageReceivedEvent(EventBase):
    """A new message arrived in a chat."""

    type: Literal["message_received"] = "message_received"

    message_id: str
    chat_id: str
    sender: EventParticipant
    attendees: list[EventParticipant] = Field(default_factory=list)
    content: Optional[str] = None
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    timestamp: datetime
    is_group: bool = False
    message_type: Optional[str] = None
    is_sender: Optional[bool] = Field(
        None,
        description="Explicit outgoing indicator; None when the provider omits it",
    )
    quoted: Optional[dict[str, Any]] = None
    subject: Optional[str] = None
    account_info: Optional[dict[str, Any]] = Field(
        None,
        description="Connected account details; user_id is the owner's provider id",
    )

    @model_validator(mode="before")
    @classmethod
    def accept_message_alias(cls, data: Any) -> Any:
        # Webhooks put the body under "message"
        if isinstance(data, dict) and "content" not in data and "message" in data:
            return {**data, "content": data["message"]}
        return data

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_event_timestamp(cls, v: Any) -> Optional[datetime]:
        return _timestamp(v)

    def provider_attachments(self) -> list[ProviderAttachment]:
        return [parse_attachment(raw) for raw in self.attachments]

    @property
    def owner_provider_id(self) -> Optional[str]:
        user_id = (self.account_info or {}).get("user_id")
        return str(user_id) if user_id else None


class MessageReadEvent(EventBase):
    type: Literal["message_read"] = "message_read"

    message_id: str
    chat_id: Optional[str] = None


class MessageEditedEvent(EventBase):
    type: Literal["message_edited"] = "message_edited"

    message_id: str
    chat_id: Optional[str] = None
    new_content: Optional[str] = None


class MessageDeletedEvent(EventBase):
    type: Literal["message_deleted"] = "message_deleted"

    message_id: str
    chat_id: Optional[str] = None


class MessageReactionEvent(EventBase):
    type: Literal["message_reaction"] = "message_reaction"

    message_id: str
    chat_id: Optional[str] = None
    reaction: Optional[str] = None
    sender: Optional[EventParticipant] = None


# ============================================================================
# Account events
# ============================================================================


AccountStatusValue = Literal["connected", "disconnected", "error"]


def _lowercase_status(v: Any) -> Any:
    return v.lower() if isinstance(v, str) else v


class AccountStatusEvent(EventBase):
    type: Literal["account_status"] = "account_status"

    status: AccountStatusValue

    _normalize_status = field_validator("status", mode="before")(_lowercase_status)


class AccountConnectedEvent(EventBase):
    """A new upstream account was linked to an owner."""

    type: Literal["account_connected"] = "account_connected"

    status: AccountStatusValue = "connected"
    owner: Optional[str] = Field(None, description="Opaque owner identifier")

    _normalize_status = field_validator("status", mode="before")(_lowercase_status)


class AccountDisconnectedEvent(EventBase):
    type: Literal["account_disconnected"] = "account_disconnected"


# ============================================================================
# Profile view events
# ============================================================================


class ProfileViewer(BaseModel):
    """Someone who viewed the owner's profile."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    headline: Optional[str] = None
    avatar_url: Optional[str] = None
    profile_url: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def normalize_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return {
            **data,
            "name": data.get("display_name") or data.get("name"),
            "avatar_url": data.get("profile_picture_url") or data.get("avatar_url"),
        }


class ProfileViewEvent(EventBase):
    type: Literal["profile_view"] = "profile_view"

    viewer: ProfileViewer
    viewed_at: Optional[datetime] = None

    @field_validator("viewed_at", mode="before")
    @classmethod
    def parse_viewed_at(cls, v: Any) -> Optional[datetime]:
        return _timestamp(v)


# ============================================================================
# Union
# ============================================================================


InboundEvent = Annotated[
    Union[
        MessageReceivedEvent,
        MessageReadEvent,
        MessageEditedEvent,
        MessageDeletedEvent,
        MessageReactionEvent,
        AccountStatusEvent,
        AccountConnectedEvent,
        AccountDisconnectedEvent,
        ProfileViewEvent,
    ],
    Field(discriminator="type"),
]

_inbound_event_adapter: TypeAdapter[InboundEvent] = TypeAdapter(InboundEvent)


def parse_event(payload: dict[str, Any]) -> InboundEvent:
    """Validate a raw event payload into its typed model.

    Raises:
        pydantic.ValidationError: If the payload has an unknown type or bad fields.
    """
    return _inbound_event_adapter.validate_python(payload)
