"""
Inventory error taxonomy

Every failure a caller may need to act on carries a stable ``kind``.
Callers switch on ``kind`` (or the exception class), never on ``message``.
"""
from typing import Any, Dict, Optional


class InventoryError(Exception):
    """Base class for inventory failures"""

    kind = "InventoryError"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to API payload"""
        return {"detail": self.message, "type": self.kind}


class ValidationError(InventoryError):
    """Bad or missing input; no state was changed"""

    kind = "ValidationError"
    http_status = 400

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["field"] = self.field
        return payload


class NotFoundError(InventoryError):
    """Referenced block or token does not exist"""

    kind = "NotFoundError"
    http_status = 404


class AlreadyDispatchedError(InventoryError):
    """Block has already left the yard"""

    kind = "AlreadyDispatchedError"
    http_status = 409


class EncodingError(InventoryError):
    """Identity artifact could not be rendered"""

    kind = "EncodingError"
    http_status = 500


class StorageError(InventoryError):
    """Persistent store failure; details are logged, not exposed"""

    kind = "StorageError"
    http_status = 500

    def __init__(self, message: str = "Storage operation failed", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.__cause__ = cause


class BlobError(InventoryError):
    """Blob store failure; details are logged, not exposed"""

    kind = "BlobError"
    http_status = 502

    def __init__(self, message: str = "Blob store operation failed", reference: Optional[str] = None):
        super().__init__(message)
        self.reference = reference
