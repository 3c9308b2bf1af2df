"""Infrastructure components for Inboxsync.

This package contains infrastructure-level components like:
- Blob storage for attachment binaries
- Keyed single-flight locks
"""

from inboxsync_core.infrastructure.blob_storage import (
    BlobStorage,
    BlobStorageError,
    FilesystemBlobStorage,
    generate_attachment_key,
)
from inboxsync_core.infrastructure.keyed_lock import (
    KeyedLock,
    KeyedLockTimeout,
    LocalKeyedLock,
    RedisKeyedLock,
    build_keyed_lock,
)

__all__ = [
    "BlobStorage",
    "BlobStorageError",
    "FilesystemBlobStorage",
    "KeyedLock",
    "KeyedLockTimeout",
    "LocalKeyedLock",
    "RedisKeyedLock",
    "build_keyed_lock",
    "generate_attachment_key",
]
