"""
Content-addressable blob store for block photos and QR artifacts
"""
import hashlib
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Optional

from app.core.config import get_settings
from app.core.errors import BlobError, NotFoundError
from app.core.logging_config import LoggingConfig
from app.core.metrics import blob_operations_total

logger = LoggingConfig.get_logger(__name__)

# <sha256 hex>[.<ext>]
_REFERENCE_RE = re.compile(r"^[0-9a-f]{64}(\.[a-z0-9]{1,8})?$")


class LocalBlobStore:
    """
    Filesystem blob store

    A reference is the SHA-256 of the content plus an optional extension,
    so storing identical bytes twice yields the same reference. A salt
    gives its owner a blob of its own even when the bytes match another.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def make_reference(data: bytes, extension: str = "", salt: str = "") -> str:
        """Compute the reference under which data would be stored"""
        hasher = hashlib.sha256()
        if salt:
            hasher.update(salt.encode("utf-8") + b"\0")
        hasher.update(data)
        digest = hasher.hexdigest()
        extension = extension.lower().lstrip(".")
        return f"{digest}.{extension}" if extension else digest

    def _path_for(self, reference: str) -> Path:
        if not _REFERENCE_RE.match(reference or ""):
            raise BlobError("Invalid blob reference", reference=reference)
        return self.root / reference

    def store(self, data: bytes, extension: str = "", salt: str = "") -> str:
        """
        Store bytes and return their reference

        Args:
            data: Blob content
            extension: File extension hint (e.g. "png")
            salt: Owner-specific prefix mixed into the reference

        Returns:
            Blob reference
        """
        reference = self.make_reference(data, extension, salt)
        path = self._path_for(reference)
        if path.exists():
            blob_operations_total.labels(operation="store", status="deduplicated").inc()
            return reference

        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".incoming-")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            blob_operations_total.labels(operation="store", status="failed").inc()
            logger.error(
                "Failed to store blob",
                exc_info=True,
                extra={"blob_ref": reference, "error": str(e)}
            )
            raise BlobError("Failed to store blob", reference=reference) from e

        blob_operations_total.labels(operation="store", status="success").inc()
        logger.debug("Stored blob", extra={"blob_ref": reference, "size": len(data)})
        return reference

    def retrieve(self, reference: str) -> bytes:
        """Read blob content; NotFoundError if absent, BlobError if unreadable"""
        if not _REFERENCE_RE.match(reference or ""):
            raise NotFoundError("Blob not found")
        path = self.root / reference
        try:
            data = path.read_bytes()
        except FileNotFoundError as e:
            blob_operations_total.labels(operation="retrieve", status="missing").inc()
            raise NotFoundError("Blob not found") from e
        except OSError as e:
            blob_operations_total.labels(operation="retrieve", status="failed").inc()
            logger.error("Failed to read blob", exc_info=True, extra={"blob_ref": reference})
            raise BlobError("Failed to read blob", reference=reference) from e
        blob_operations_total.labels(operation="retrieve", status="success").inc()
        return data

    def exists(self, reference: str) -> bool:
        try:
            return self._path_for(reference).exists()
        except BlobError:
            return False

    def release(self, reference: str) -> None:
        """Delete a blob; releasing an absent blob is a no-op"""
        path = self._path_for(reference)
        try:
            path.unlink()
        except FileNotFoundError:
            blob_operations_total.labels(operation="release", status="missing").inc()
            return
        except OSError as e:
            blob_operations_total.labels(operation="release", status="failed").inc()
            logger.error("Failed to release blob", exc_info=True, extra={"blob_ref": reference})
            raise BlobError("Failed to release blob", reference=reference) from e
        blob_operations_total.labels(operation="release", status="success").inc()


_blob_store: Optional[LocalBlobStore] = None
_blob_store_lock = threading.Lock()


def get_blob_store() -> LocalBlobStore:
    """
    Get the process-wide blob store (FastAPI dependency)

    Returns:
        LocalBlobStore rooted at settings.blob_store_dir
    """
    global _blob_store
    if _blob_store is None:
        with _blob_store_lock:
            if _blob_store is None:
                _blob_store = LocalBlobStore(get_settings().blob_store_dir)
    return _blob_store
