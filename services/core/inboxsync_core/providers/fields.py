"""Raw provider payload normalization.

Provider payloads name the same concept in several ways (``filename`` vs
``file_name`` vs ``name``). Every such concept has exactly one priority list
below; the first present, non-empty field wins. Business logic only ever sees
the DTOs built here.

Usage:
    attachment = parse_attachment({"file_name": "a.pdf", "mimetype": "application/pdf"})
    assert attachment.filename == "a.pdf"
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from inboxsync_core.providers.base import (
    ProviderAttachment,
    ProviderAttendee,
    ProviderChat,
    ProviderMessage,
    ProviderProfile,
)


# =============================================================================
# FIELD PRIORITY LISTS
# =============================================================================


ATTACHMENT_ID_FIELDS = ("id", "attachment_id")
ATTACHMENT_TYPE_FIELDS = ("type", "attachment_type")
ATTACHMENT_URL_FIELDS = ("url", "content_url", "download_url", "media_url", "src", "href")
ATTACHMENT_FILENAME_FIELDS = ("filename", "file_name", "name")
ATTACHMENT_SIZE_FIELDS = ("file_size", "size")
ATTACHMENT_MIME_FIELDS = ("mime_type", "mimetype")

PARTICIPANT_ID_FIELDS = ("attendee_provider_id", "provider_id", "id")
PARTICIPANT_NAME_FIELDS = ("attendee_name", "display_name", "name")
PARTICIPANT_PROFILE_URL_FIELDS = ("attendee_profile_url", "profile_url")
PARTICIPANT_AVATAR_FIELDS = (
    "attendee_picture_url",
    "picture_url",
    "profile_picture_url",
    "avatar_url",
)

MESSAGE_ID_FIELDS = ("message_id", "id", "provider_id")
MESSAGE_CONTENT_FIELDS = ("message", "text", "content")
MESSAGE_TIMESTAMP_FIELDS = ("timestamp", "created_at", "date")

CHAT_TIMESTAMP_FIELDS = ("timestamp", "updated_at")
CHAT_ORGANIZATION_FIELDS = ("organization_id", "organization")
CHAT_MAILBOX_FIELDS = ("mailbox_name", "mailbox", "mailbox_id")

PROFILE_ID_FIELDS = ("provider_id", "id", "public_identifier")


# =============================================================================
# HELPERS
# =============================================================================


def pick(payload: Optional[dict], fields: Iterable[str]) -> Any:
    """Return the first present, non-empty value among ``fields``."""
    if not payload:
        return None
    for name in fields:
        value = payload.get(name)
        if value is not None and value != "":
            return value
    return None


def as_flag(value: Any) -> bool:
    """Providers send booleans as 1/0, "true"/"false" or real bools."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def as_optional_flag(value: Any) -> Optional[bool]:
    """Like as_flag, but keeps "not provided" distinct from False."""
    if value is None:
        return None
    return as_flag(value)


def as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or epoch number into a naive UTC datetime.

    Naive UTC matches what the database stores, so comparisons against
    loaded rows never mix aware and naive values.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        seconds = float(value)
        # Epoch milliseconds
        if seconds > 1e12:
            seconds = seconds / 1000.0
        parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


# =============================================================================
# PARSERS
# =============================================================================


def parse_attachment(raw: dict) -> ProviderAttachment:
    """Normalize an attachment descriptor from a webhook or API payload."""
    external_id = pick(raw, ATTACHMENT_ID_FIELDS)
    # Image payloads carry dimensions under "size"; plain files put the byte count there
    dimensions = raw.get("size") if isinstance(raw.get("size"), dict) else raw
    return ProviderAttachment(
        external_id=str(external_id) if external_id is not None else None,
        type=pick(raw, ATTACHMENT_TYPE_FIELDS) or "file",
        url=pick(raw, ATTACHMENT_URL_FIELDS),
        filename=pick(raw, ATTACHMENT_FILENAME_FIELDS),
        size_bytes=as_int(pick(raw, ATTACHMENT_SIZE_FIELDS)),
        mime_type=pick(raw, ATTACHMENT_MIME_FIELDS),
        unavailable=as_flag(raw.get("unavailable")),
        width=as_int(dimensions.get("width")),
        height=as_int(dimensions.get("height")),
        duration=as_int(raw.get("duration")),
        sticker=as_flag(raw.get("sticker")),
        gif=as_flag(raw.get("gif")),
        voice_note=as_flag(raw.get("voice_note")),
    )


def parse_attendee(raw: dict) -> ProviderAttendee:
    """Normalize a chat attendee from the attendees endpoint or a webhook."""
    specifics = raw.get("specifics") or {}
    return ProviderAttendee(
        external_id=str(pick(raw, PARTICIPANT_ID_FIELDS) or ""),
        name=pick(raw, PARTICIPANT_NAME_FIELDS),
        avatar_url=pick(raw, PARTICIPANT_AVATAR_FIELDS),
        profile_url=pick(raw, PARTICIPANT_PROFILE_URL_FIELDS),
        is_self=as_flag(raw.get("is_self")),
        hidden=as_flag(raw.get("hidden")),
        attendee_type=raw.get("attendee_type") or raw.get("type"),
        headline=specifics.get("headline"),
        member_urn=specifics.get("member_urn"),
        occupation=specifics.get("occupation"),
        location=specifics.get("location"),
        network_distance=specifics.get("network_distance"),
        pending_invitation=as_flag(specifics.get("pending_invitation")),
        contact_info=specifics.get("contact_info"),
        raw_data=raw,
    )


def parse_message(raw: dict, chat_id: Optional[str] = None) -> ProviderMessage:
    """Normalize a message from the chat messages endpoint."""
    message_type = raw.get("message_type")
    message_id = pick(raw, MESSAGE_ID_FIELDS)
    return ProviderMessage(
        external_id=str(message_id) if message_id is not None else "",
        chat_id=raw.get("chat_id") or chat_id,
        sender_id=raw.get("sender_id"),
        sent_at=parse_timestamp(pick(raw, MESSAGE_TIMESTAMP_FIELDS)),
        content=pick(raw, MESSAGE_CONTENT_FIELDS),
        message_type=message_type.lower() if isinstance(message_type, str) else None,
        is_sender=as_optional_flag(raw.get("is_sender")),
        is_read=as_flag(raw.get("seen")),
        sender_name=raw.get("sender_name"),
        sender_urn=raw.get("sender_urn"),
        attachments=[parse_attachment(item) for item in raw.get("attachments") or []],
        quoted=raw.get("quoted"),
        reactions=raw.get("reactions"),
        subject=raw.get("subject"),
        reply_to=raw.get("reply_to"),
        raw_data=raw,
    )


def parse_chat(raw: dict) -> ProviderChat:
    """Normalize a chat from the chats endpoint.

    The provider encodes direct chats as type 0; anything else is a group.
    """
    last_message = raw.get("lastMessage") or raw.get("last_message") or {}
    timestamp = pick(last_message, MESSAGE_TIMESTAMP_FIELDS) or pick(raw, CHAT_TIMESTAMP_FIELDS)
    raw_type = raw.get("type")
    if raw_type in (0, "0", "direct", None):
        chat_type = "direct"
    else:
        chat_type = "group"

    return ProviderChat(
        external_id=str(raw.get("id")),
        type=chat_type,
        name=raw.get("name"),
        last_message_at=parse_timestamp(timestamp),
        unread_count=as_int(raw.get("unread_count")) or 0,
        archived=as_flag(raw.get("archived")),
        read_only=as_flag(raw.get("read_only")),
        organization_id=pick(raw, CHAT_ORGANIZATION_FIELDS),
        mailbox=pick(raw, CHAT_MAILBOX_FIELDS),
        content_type=raw.get("content_type"),
        folder=",".join(raw["folder"]) if isinstance(raw.get("folder"), list) else raw.get("folder"),
        last_sender_id=last_message.get("sender_id"),
        last_sender_urn=last_message.get("sender_urn"),
        raw_data=raw,
    )


def parse_profile(raw: dict) -> ProviderProfile:
    """Normalize a user profile."""
    return ProviderProfile(
        external_id=str(pick(raw, PROFILE_ID_FIELDS) or ""),
        first_name=raw.get("first_name"),
        last_name=raw.get("last_name"),
        headline=raw.get("headline"),
        avatar_url=raw.get("profile_picture_url"),
        avatar_url_large=raw.get("profile_picture_url_large"),
        public_profile_url=raw.get("public_profile_url"),
        public_identifier=raw.get("public_identifier"),
        network_distance=raw.get("network_distance"),
        location=raw.get("location"),
        summary=raw.get("summary"),
        contact_info=raw.get("contact_info"),
        websites=raw.get("websites"),
        work_experience=list(raw.get("work_experience") or []),
        raw_data=raw,
    )


__all__ = [
    "ATTACHMENT_FILENAME_FIELDS",
    "ATTACHMENT_ID_FIELDS",
    "ATTACHMENT_MIME_FIELDS",
    "ATTACHMENT_SIZE_FIELDS",
    "ATTACHMENT_TYPE_FIELDS",
    "ATTACHMENT_URL_FIELDS",
    "as_flag",
    "as_optional_flag",
    "parse_attachment",
    "parse_attendee",
    "parse_chat",
    "parse_message",
    "parse_profile",
    "parse_timestamp",
    "pick",
]
