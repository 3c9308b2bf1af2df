"""Blob storage for attachment binaries.

Usage:
    storage = FilesystemBlobStorage("/var/lib/inboxsync/attachments")

    key = generate_attachment_key(message.id, "report.pdf", "application/pdf")
    url = await storage.upload(key, data, "application/pdf", {"message_id": str(message.id)})
"""

import json
import re
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional


# Extension mapping from MIME types
MIME_TO_EXTENSION = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
    "application/pdf": "pdf",
    "application/json": "json",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.ms-excel": "xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.ms-powerpoint": "ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "text/plain": "txt",
    "text/html": "html",
    "text/csv": "csv",
    "application/zip": "zip",
    "application/gzip": "gz",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "audio/mp4": "m4a",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
}

DEFAULT_EXTENSION = "bin"

_SAFE_EXTENSION = re.compile(r"^[a-z0-9]{1,10}$")


class BlobStorageError(Exception):
    """Raised when a blob cannot be stored."""

    pass


def _get_safe_extension(filename: Optional[str], mime_type: Optional[str]) -> str:
    """Pick an extension from the filename, then the MIME type, then "bin"."""
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[-1].lower()
        if _SAFE_EXTENSION.match(ext):
            return ext

    if mime_type:
        ext = MIME_TO_EXTENSION.get(mime_type.lower())
        if ext:
            return ext

    return DEFAULT_EXTENSION


def generate_attachment_key(
    message_id: int | str,
    filename: Optional[str],
    mime_type: Optional[str],
) -> str:
    """Derive a storage key: ``attachments/{message_id}/{random6}.{ext}``."""
    suffix = uuid.uuid4().hex[:6]
    return f"attachments/{message_id}/{suffix}.{_get_safe_extension(filename, mime_type)}"


class BlobStorage(ABC):
    """Durable object store for attachment binaries."""

    @abstractmethod
    async def upload(
        self,
        key: str,
        data: bytes,
        mime_type: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        """Store ``data`` under ``key`` and return its URL.

        Raises:
            BlobStorageError: If the blob cannot be stored.
        """
        ...


class FilesystemBlobStorage(BlobStorage):
    """Blob storage backed by a local directory.

    Objects live at ``{storage_path}/{key}`` with a ``.meta.json`` sidecar
    holding the MIME type and caller metadata.
    """

    def __init__(self, storage_path: str, public_base_url: Optional[str] = None):
        """Initialize filesystem storage.

        Args:
            storage_path: Base directory for stored objects.
            public_base_url: URL prefix returned by upload. Defaults to file:// URLs.
        """
        self.storage_path = Path(storage_path)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def _resolve(self, key: str) -> Path:
        target = (self.storage_path / key).resolve()
        if self.storage_path.resolve() not in target.parents:
            raise BlobStorageError(f"Storage key escapes storage root: {key}")
        return target

    async def upload(
        self,
        key: str,
        data: bytes,
        mime_type: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        target = self._resolve(key)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            sidecar = target.with_name(target.name + ".meta.json")
            sidecar.write_text(
                json.dumps({"mime_type": mime_type, "metadata": metadata or {}})
            )
        except OSError as e:
            raise BlobStorageError(f"Failed to write blob {key}: {e}") from e

        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return target.as_uri()
