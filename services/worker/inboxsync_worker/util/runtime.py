"""Collaborators shared by worker tasks, built from settings."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from inboxsync_core.config import Settings
from inboxsync_core.domain.services.enrichment import ContactEnrichmentResolver
from inboxsync_core.infrastructure.blob_storage import BlobStorage, FilesystemBlobStorage
from inboxsync_core.infrastructure.keyed_lock import KeyedLock, build_keyed_lock
from inboxsync_core.providers.base import ProviderAdapter
from inboxsync_core.providers.unipile import UnipileAdapter

logger = logging.getLogger(__name__)


def build_provider(settings: Settings) -> ProviderAdapter:
    """Create the provider adapter.

    Without credentials every provider call fails, which the sync services
    treat as a degraded download or lookup.
    """
    if not settings.provider_api_key or not settings.provider_dsn:
        logger.warning("Provider credentials are not configured; provider calls will fail")

    return UnipileAdapter(
        api_key=settings.provider_api_key or "",
        dsn=settings.provider_dsn or "",
        timeout=settings.provider_timeout_seconds,
    )


def build_blob_storage(settings: Settings) -> Optional[BlobStorage]:
    if not settings.attachments_path:
        return None
    return FilesystemBlobStorage(
        settings.attachments_path,
        public_base_url=settings.blob_public_base_url,
    )


def build_lock(settings: Settings) -> KeyedLock:
    # Built per task: asyncio and redis.asyncio primitives are bound to the
    # event loop each task creates with asyncio.run. Tasks order each other
    # only through the shared Redis keys.
    return build_keyed_lock(settings)


def build_enrichment(session: Session, provider: ProviderAdapter, settings: Settings) -> ContactEnrichmentResolver:
    return ContactEnrichmentResolver(
        session,
        provider,
        enabled=settings.profile_enrichment_available,
        owner_refresh_hours=settings.owner_profile_refresh_hours,
    )
