"""Provider integrations for Inboxsync.

This package contains provider-specific implementations:
- Base: Abstract interface and DTOs
- Fields: Raw payload normalization (field-priority lists)
- Unipile: httpx API client
"""

from inboxsync_core.providers.base import (
    AttachmentContent,
    ConnectivityResult,
    PaginatedResult,
    ProviderAdapter,
    ProviderAttachment,
    ProviderAttendee,
    ProviderChat,
    ProviderMessage,
    ProviderProfile,
)

__all__ = [
    "AttachmentContent",
    "ConnectivityResult",
    "PaginatedResult",
    "ProviderAdapter",
    "ProviderAttachment",
    "ProviderAttendee",
    "ProviderChat",
    "ProviderMessage",
    "ProviderProfile",
]
