"""Unipile messaging provider."""

from inboxsync_core.providers.unipile.adapter import ProviderAPIError, UnipileAdapter

__all__ = ["ProviderAPIError", "UnipileAdapter"]
