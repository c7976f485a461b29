"""
Blob Store for offline uploads, documents and biometric photos

Namespaced binary object storage. Every object has an opaque id, a byte
stream and a metadata sidecar carrying its provenance:

    {tenantId, uploaderId, originalFilename, contentType, size, kind, createdAt}

Namespaces:
    - mobileOffline: transient files attached to offline events
    - documents: durable copies made by the user-document handler
    - biometrics: durable copies made when an enrollment is approved

Stored objects are never modified in place. `copy` creates a new object in
the destination namespace and leaves the source untouched, so the request
path and the template worker can share the store without coordination.

Layout (FilesystemBlobStore):
    <root>/<namespace>/<blob_id>            object bytes
    <root>/<namespace>/<blob_id>.meta.json  metadata sidecar
"""
import json
import logging
import os
import re
import shutil
import tempfile
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import BinaryIO, Iterable, Optional

from app.core.config import settings
from app.core.metrics import record_blob_stored

logger = logging.getLogger(__name__)

OFFLINE_NAMESPACE = "mobileOffline"
DOCUMENTS_NAMESPACE = "documents"
BIOMETRICS_NAMESPACE = "biometrics"

# Namespaces and ids become path segments
_SAFE_NAME = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

CHUNK_SIZE = 1024 * 1024


class BlobStoreError(Exception):
    """Base class for blob store failures."""


class BlobNotFoundError(BlobStoreError, LookupError):
    """Requested blob does not exist in the namespace."""


class BlobStorageError(BlobStoreError):
    """Blob could not be written, copied or read."""


class BlobTooLargeError(BlobStorageError):
    """Upload exceeded the configured per-file size cap."""


@dataclass
class BlobInfo:
    """Descriptor of a stored object (id + provenance metadata)."""

    id: str
    namespace: str
    size: int
    content_type: str = "application/octet-stream"
    filename: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @property
    def tenant_id(self) -> Optional[str]:
        return self.metadata.get("tenantId")

    def to_descriptor(self) -> dict:
        """File descriptor as recorded on offline events and requests."""
        return {
            "blobId": self.id,
            "filename": self.filename,
            "contentType": self.content_type,
            "size": self.size,
        }


class BlobStore(ABC):
    """
    Namespaced blob storage interface.

    Any backend that can stream bytes in and out by id satisfies it; the
    workflow above it only depends on these operations.
    """

    @abstractmethod
    def put(self, namespace: str, stream: BinaryIO, metadata: dict) -> BlobInfo:
        """Stream `stream` into a new object; returns its descriptor."""

    @abstractmethod
    def open(self, namespace: str, blob_id: str) -> tuple[BinaryIO, BlobInfo]:
        """Open an object for streamed reading. Caller closes the reader."""

    @abstractmethod
    def info(self, namespace: str, blob_id: str) -> BlobInfo:
        """Return the descriptor without opening the object."""

    @abstractmethod
    def copy(
        self,
        src_namespace: str,
        blob_id: str,
        dst_namespace: str,
        metadata: Optional[dict] = None,
    ) -> BlobInfo:
        """Server-side copy into another namespace; returns the new object's descriptor."""

    @abstractmethod
    def delete(self, namespace: str, blob_id: str) -> bool:
        """Remove an object and its metadata; False when it did not exist."""

    def discard(self, namespace: str, blob_ids: Iterable[str]) -> None:
        """
        Best-effort removal of objects nothing refers to any more.

        Used to roll back blobs written by an operation that failed after
        storing them. Failures are logged, never raised, so the original
        error reaches the caller.
        """
        for blob_id in blob_ids:
            try:
                self.delete(namespace, blob_id)
            except BlobStoreError as e:
                logger.warning(
                    f"Could not discard orphaned blob {blob_id} in {namespace}: {e}",
                    extra={"event_type": "blob_discard_failed", "namespace": namespace, "blob_id": blob_id},
                )

    def read_bytes(self, namespace: str, blob_id: str) -> bytes:
        reader, _ = self.open(namespace, blob_id)
        with reader:
            return reader.read()

    def exists(self, namespace: str, blob_id: str) -> bool:
        try:
            self.info(namespace, blob_id)
            return True
        except BlobNotFoundError:
            return False


class FilesystemBlobStore(BlobStore):
    """
    BlobStore backed by a local directory tree.

    Writes go to a temp file in the namespace directory and are renamed into
    place, so readers never observe a partially written object.
    """

    def __init__(self, root: str, max_bytes: Optional[int] = None):
        """
        Args:
            root: Base directory (created if missing)
            max_bytes: Optional per-object size cap enforced while streaming
        """
        self.root = os.path.abspath(root)
        self.max_bytes = max_bytes
        os.makedirs(self.root, exist_ok=True)

    def _namespace_dir(self, namespace: str, create: bool = False) -> str:
        if not _SAFE_NAME.match(namespace or ""):
            raise BlobStorageError(f"Invalid namespace: {namespace!r}")
        path = os.path.join(self.root, namespace)
        if create:
            os.makedirs(path, exist_ok=True)
        return path

    def _paths(self, namespace: str, blob_id: str) -> tuple[str, str]:
        if not _SAFE_NAME.match(blob_id or ""):
            raise BlobNotFoundError(f"Blob {blob_id!r} not found in {namespace}")
        ns_dir = self._namespace_dir(namespace)
        data_path = os.path.join(ns_dir, blob_id)
        return data_path, data_path + ".meta.json"

    @staticmethod
    def _to_info(namespace: str, blob_id: str, meta: dict) -> BlobInfo:
        return BlobInfo(
            id=blob_id,
            namespace=namespace,
            size=int(meta.get("size") or 0),
            content_type=meta.get("contentType") or "application/octet-stream",
            filename=meta.get("originalFilename"),
            metadata=meta,
        )

    def _write_meta(self, meta_path: str, meta: dict) -> None:
        tmp_path = meta_path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(meta, f)
        os.replace(tmp_path, meta_path)

    def put(self, namespace: str, stream: BinaryIO, metadata: dict) -> BlobInfo:
        ns_dir = self._namespace_dir(namespace, create=True)
        blob_id = uuid.uuid4().hex
        data_path, meta_path = self._paths(namespace, blob_id)

        size = 0
        fd, tmp_path = tempfile.mkstemp(dir=ns_dir, prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as out:
                while True:
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if self.max_bytes is not None and size > self.max_bytes:
                        raise BlobTooLargeError(
                            f"Upload exceeds {self.max_bytes} bytes"
                        )
                    out.write(chunk)
            os.replace(tmp_path, data_path)
        except BlobStorageError:
            os.unlink(tmp_path)
            raise
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            logger.error(
                f"Failed to store blob in {namespace}: {e}",
                extra={"event_type": "blob_put_failed", "namespace": namespace},
            )
            raise BlobStorageError(str(e)) from e

        meta = dict(metadata or {})
        meta.setdefault("contentType", "application/octet-stream")
        meta["size"] = size
        meta["createdAt"] = datetime.now(timezone.utc).isoformat()
        try:
            self._write_meta(meta_path, meta)
        except OSError as e:
            os.unlink(data_path)
            raise BlobStorageError(str(e)) from e

        record_blob_stored(namespace, size)
        logger.debug(
            "Blob stored",
            extra={
                "event_type": "blob_stored",
                "namespace": namespace,
                "blob_id": blob_id,
                "size": size,
                "kind": meta.get("kind"),
            },
        )
        return self._to_info(namespace, blob_id, meta)

    def info(self, namespace: str, blob_id: str) -> BlobInfo:
        data_path, meta_path = self._paths(namespace, blob_id)
        if not os.path.isfile(data_path):
            raise BlobNotFoundError(f"Blob {blob_id} not found in {namespace}")
        try:
            with open(meta_path, "r", encoding="utf-8") as f:
                meta = json.load(f)
        except FileNotFoundError:
            meta = {"size": os.path.getsize(data_path)}
        except (OSError, ValueError) as e:
            raise BlobStorageError(f"Unreadable metadata for blob {blob_id}: {e}") from e
        return self._to_info(namespace, blob_id, meta)

    def open(self, namespace: str, blob_id: str) -> tuple[BinaryIO, BlobInfo]:
        info = self.info(namespace, blob_id)
        data_path, _ = self._paths(namespace, blob_id)
        try:
            reader = open(data_path, "rb")
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"Blob {blob_id} not found in {namespace}") from e
        except OSError as e:
            raise BlobStorageError(str(e)) from e
        return reader, info

    def copy(
        self,
        src_namespace: str,
        blob_id: str,
        dst_namespace: str,
        metadata: Optional[dict] = None,
    ) -> BlobInfo:
        source = self.info(src_namespace, blob_id)
        src_path, _ = self._paths(src_namespace, blob_id)
        self._namespace_dir(dst_namespace, create=True)

        new_id = uuid.uuid4().hex
        dst_path, dst_meta_path = self._paths(dst_namespace, new_id)
        try:
            shutil.copyfile(src_path, dst_path + ".tmp")
            os.replace(dst_path + ".tmp", dst_path)
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"Blob {blob_id} not found in {src_namespace}") from e
        except OSError as e:
            logger.error(
                f"Failed to copy blob {blob_id} from {src_namespace} to {dst_namespace}: {e}",
                extra={
                    "event_type": "blob_copy_failed",
                    "blob_id": blob_id,
                    "src_namespace": src_namespace,
                    "dst_namespace": dst_namespace,
                },
            )
            raise BlobStorageError(str(e)) from e

        meta = {k: v for k, v in source.metadata.items() if k != "createdAt"}
        meta.update(metadata or {})
        meta["size"] = source.size
        meta["copiedFrom"] = f"{src_namespace}/{blob_id}"
        meta["createdAt"] = datetime.now(timezone.utc).isoformat()
        try:
            self._write_meta(dst_meta_path, meta)
        except OSError as e:
            os.unlink(dst_path)
            raise BlobStorageError(str(e)) from e

        record_blob_stored(dst_namespace, source.size)
        logger.info(
            "Blob copied",
            extra={
                "event_type": "blob_copied",
                "blob_id": blob_id,
                "new_blob_id": new_id,
                "src_namespace": src_namespace,
                "dst_namespace": dst_namespace,
                "size": source.size,
            },
        )
        return self._to_info(dst_namespace, new_id, meta)

    def delete(self, namespace: str, blob_id: str) -> bool:
        data_path, meta_path = self._paths(namespace, blob_id)
        removed = False
        for path in (data_path, meta_path):
            try:
                os.unlink(path)
                removed = removed or path == data_path
            except FileNotFoundError:
                continue
            except OSError as e:
                raise BlobStorageError(f"Could not delete blob {blob_id}: {e}") from e
        if removed:
            logger.info(
                "Blob deleted",
                extra={"event_type": "blob_deleted", "namespace": namespace, "blob_id": blob_id},
            )
        return removed


# Global singleton instance
_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """
    Get the global BlobStore instance (also used as a FastAPI dependency).

    Creates a FilesystemBlobStore rooted at BLOB_STORAGE_DIR on first call.
    """
    global _blob_store

    if _blob_store is None:
        _blob_store = FilesystemBlobStore(
            settings.BLOB_STORAGE_DIR,
            max_bytes=settings.MAX_UPLOAD_FILE_BYTES,
        )
        logger.info(
            "Global BlobStore instance created",
            extra={"event_type": "blob_store_singleton_created", "root": settings.BLOB_STORAGE_DIR},
        )

    return _blob_store
