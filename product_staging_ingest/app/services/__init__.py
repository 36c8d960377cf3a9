"""Service layer for Product Staging Ingest"""

from .audit_logger import CentralMessageLogger
from .audit_sidecar import AuditSidecar
from .cache_sync_client import ProductCacheClient
from .lifecycle_sync_service import LifecycleSyncService, SyncOutcome
from .notifications import Notifier, NullNotifier, RoomNotifier

__all__ = [
    "LifecycleSyncService",
    "SyncOutcome",
    "ProductCacheClient",
    "CentralMessageLogger",
    "AuditSidecar",
    "Notifier",
    "NullNotifier",
    "RoomNotifier",
]
