"""Domain services for Inboxsync."""

from inboxsync_core.domain.services.attachment import AttachmentPipeline
from inboxsync_core.domain.services.bulk_import import BulkMessageImporter
from inboxsync_core.domain.services.enrichment import ContactEnrichmentResolver
from inboxsync_core.domain.services.event_router import EventRouter
from inboxsync_core.domain.services.ingest import IngestService
from inboxsync_core.domain.services.message_sync import MessageSyncService
from inboxsync_core.domain.services.sync_state import SyncStateTracker
from inboxsync_core.domain.services.upsert import UpsertService

__all__ = [
    "AttachmentPipeline",
    "BulkMessageImporter",
    "ContactEnrichmentResolver",
    "EventRouter",
    "IngestService",
    "MessageSyncService",
    "SyncStateTracker",
    "UpsertService",
]
