"""Error taxonomy for catalog, storage and ingestion operations.

Every public operation either returns a complete result or raises exactly one
of the classes below. The HTTP layer maps them onto status codes.
"""

from typing import Any, Dict, Optional


class CatalogError(Exception):
    """Base class for all typed catalog errors."""

    status_code = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logs and API error bodies."""
        result: Dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
        }
        if self.context:
            result["context"] = self.context
        return result


class InvalidFormatError(CatalogError):
    """Archive or icon bytes failed their magic-byte check."""

    status_code = 400


class InvalidMetadataError(CatalogError):
    """A metadata field (name, version, link, category, range) was rejected."""

    status_code = 400


class TooLargeError(CatalogError):
    """Upload exceeds its configured byte ceiling."""

    status_code = 413

    def __init__(self, kind: str, size: int, limit: int):
        super().__init__(
            f"{kind} too large: {size} bytes exceeds the {limit // (1024 * 1024)}MB limit",
            {"kind": kind, "size": size, "limit": limit},
        )
        self.kind = kind
        self.size = size
        self.limit = limit


class NotFoundError(CatalogError):
    status_code = 404


class ConflictError(CatalogError):
    status_code = 409


class ForbiddenError(CatalogError):
    status_code = 403


class InternalError(CatalogError):
    """I/O or database failure not otherwise classified."""

    status_code = 500
