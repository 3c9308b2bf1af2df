"""Organizational and broadcast content detection.

Company pages, sponsored messages and InMail are not personal conversations
and are skipped during backfill unless explicitly included.
"""

from typing import Optional

from inboxsync_core.providers.base import ProviderChat


ORGANIZATION_URN_PREFIX = "urn:li:organization:"

ORG_CONTENT_TYPES = frozenset({"inmail", "sponsored", "linkedin_offer"})


def is_organization_urn(value: Optional[str]) -> bool:
    """Whether an id or URN names an organization (case-insensitive)."""
    if not value:
        return False
    return ORGANIZATION_URN_PREFIX in value.lower()


def is_org_chat(chat: ProviderChat) -> bool:
    """Classify a chat as organizational or broadcast content."""
    if chat.organization_id:
        return True

    if chat.content_type and chat.content_type.lower() in ORG_CONTENT_TYPES:
        return True

    return is_organization_urn(chat.last_sender_id) or is_organization_urn(
        chat.last_sender_urn
    )

