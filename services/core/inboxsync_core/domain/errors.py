"""Error taxonomy for inbox synchronization.

Only ConnectivityFailure and unexpected exceptions abort a backfill run.
The remaining errors are raised and caught inside a single sync step, logged,
and degrade that step's output instead of failing the caller.
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for sync operations."""

    pass


class AccountNotFound(SyncError):
    """Raised when an event references an account with no local mirror."""

    def __init__(self, external_account_id: str, provider: str):
        super().__init__(f"Account not found: {external_account_id} ({provider})")
        self.external_account_id = external_account_id
        self.provider = provider


class ConnectivityFailure(SyncError):
    """Raised when the upstream account cannot be reached before a backfill."""

    def __init__(self, account_id: str, reason: Optional[str] = None):
        message = f"Connectivity test failed for account {account_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.account_id = account_id
        self.reason = reason


class PerChatFetchFailure(SyncError):
    """Raised when attendees or messages for one chat cannot be fetched."""

    def __init__(self, chat_id: str, stage: str, cause: Exception):
        super().__init__(f"Failed to fetch {stage} for chat {chat_id}: {cause}")
        self.chat_id = chat_id
        self.stage = stage
        self.cause = cause


class PerAttachmentFailure(SyncError):
    """Raised when one attachment cannot be processed."""

    def __init__(self, attachment_id: str, cause: Exception):
        super().__init__(f"Failed to process attachment {attachment_id}: {cause}")
        self.attachment_id = attachment_id
        self.cause = cause


class EnrichmentFailure(SyncError):
    """Raised when a profile lookup fails and inline data must be used."""

    def __init__(self, identity: str, cause: Exception):
        super().__init__(f"Profile enrichment failed for {identity}: {cause}")
        self.identity = identity
        self.cause = cause


__all__ = [
    "AccountNotFound",
    "ConnectivityFailure",
    "EnrichmentFailure",
    "PerAttachmentFailure",
    "PerChatFetchFailure",
    "SyncError",
]
