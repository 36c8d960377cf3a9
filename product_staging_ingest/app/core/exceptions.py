"""
Product Staging Ingest error taxonomy.

Permanent payload errors and transient infrastructure errors both go through
the consumer's redelivery policy; permanent ones exhaust it and are
dead-lettered.
"""

from typing import Any, Dict, Optional


class StagingIngestError(Exception):
    """Base class for all ingest errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class MalformedEventError(StagingIngestError):
    """Event payload cannot be parsed or is missing product identity"""


class CacheInvariantError(StagingIngestError):
    """A write would break a staging cache invariant"""


class NonActiveProductError(CacheInvariantError):
    """Only active products may be written to the staging cache"""

    def __init__(self, product_id: str, status: Optional[str]):
        super().__init__(
            f"Only active products can be cached (product {product_id} is {status!r})",
            details={"product_id": product_id, "status": status},
        )
        self.product_id = product_id
        self.status = status


class CacheSyncError(StagingIngestError):
    """Downstream product cache rejected or failed a push"""

    def __init__(
        self, message: str, status_code: Optional[int] = None, product_id: str = ""
    ):
        super().__init__(
            message, details={"status_code": status_code, "product_id": product_id}
        )
        self.status_code = status_code
        self.product_id = product_id


class TopologyError(StagingIngestError):
    """Stream or durable consumer could not be ensured"""
