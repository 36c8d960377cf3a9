"""
Lifecycle Sync Service
======================

Maps a product lifecycle event onto staging cache operations:

    created      active      -> upsert
    created      not active  -> no-op
    updated      active      -> upsert
    updated      not active  -> remove if present
    launched     any         -> upsert, status forced to active
    activated                   (treated as launched)
    deactivated                 -> remove if present
    deleted                     -> remove if present
    anything else               -> skipped, logged only

An upsert older than the stored row (by ``updatedAt``) is not applied and
is not pushed to the remote cache; it reports ``stale``.

Every branch is safe to repeat: replaying an event leaves the cache as it was
after the first application.
"""

import enum
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..core.exceptions import MalformedEventError
from ..events.base import EventHandler, HealthCheckable
from ..events.schemas import (
    PRODUCT_ACTIVATED,
    PRODUCT_CREATED,
    PRODUCT_DEACTIVATED,
    PRODUCT_DELETED,
    PRODUCT_LAUNCHED,
    PRODUCT_UPDATED,
    LifecycleEvent,
)
from ..models.product import ACTIVE_STATUS
from ..repository import StagingProductRepository
from ..schemas.product import ProductSnapshot
from ..utils.logging import get_logger
from .cache_sync_client import ProductCacheClient

logger = get_logger("product_staging_ingest.sync")

RECOGNIZED_ACTIONS = frozenset(
    {
        PRODUCT_CREATED,
        PRODUCT_UPDATED,
        PRODUCT_LAUNCHED,
        PRODUCT_ACTIVATED,
        PRODUCT_DEACTIVATED,
        PRODUCT_DELETED,
    }
)


class SyncOutcome(str, enum.Enum):
    UPSERTED = "upserted"
    STALE = "stale"
    REMOVED = "removed"
    NOT_PRESENT = "not_present"
    IGNORED = "ignored"
    SKIPPED = "skipped"


class LifecycleSyncService(EventHandler, HealthCheckable):
    """Applies lifecycle events to the staging cache and the optional remote cache"""

    def __init__(
        self,
        repository: StagingProductRepository,
        cache_client: Optional[ProductCacheClient] = None,
    ):
        self.repository = repository
        self.cache_client = cache_client

    async def handle(self, event: LifecycleEvent) -> SyncOutcome:
        """Apply one event. Raises on failure so the consumer can redeliver."""
        action = event.action
        log_extra = {
            "event_type": event.event_type,
            "product_id": event.product_id,
            "correlation_id": event.correlation_id,
            "delivery_count": event.delivery_count,
        }

        if action not in RECOGNIZED_ACTIONS:
            logger.info(
                "Skipping unrecognized lifecycle event",
                extra={**log_extra, "operation": "sync_skip"},
            )
            return SyncOutcome.SKIPPED

        if not event.product_id:
            raise MalformedEventError(
                f"{event.event_type} event has no product id",
                details={"correlation_id": event.correlation_id},
            )

        if action in (PRODUCT_LAUNCHED, PRODUCT_ACTIVATED):
            outcome = await self._upsert(event, force_active=True)
        elif action in (PRODUCT_DEACTIVATED, PRODUCT_DELETED):
            outcome = await self._remove(event.product_id)
        elif event.status == ACTIVE_STATUS:
            outcome = await self._upsert(event)
        elif action == PRODUCT_UPDATED:
            # Product moved out of active: it must leave the cache
            outcome = await self._remove(event.product_id)
        else:
            outcome = SyncOutcome.IGNORED

        logger.info(
            "Applied lifecycle event",
            extra={**log_extra, "operation": "sync_apply", "outcome": outcome.value},
        )
        return outcome

    async def _upsert(
        self, event: LifecycleEvent, force_active: bool = False
    ) -> SyncOutcome:
        snapshot = self.build_snapshot(event, force_active=force_active)
        stored = await self.repository.upsert(snapshot)
        if stored is None:
            return SyncOutcome.STALE
        if self.cache_client is not None:
            await self.cache_client.upsert_product(stored)
        return SyncOutcome.UPSERTED

    async def _remove(self, product_id: str) -> SyncOutcome:
        removed = await self.repository.remove(product_id)
        if self.cache_client is not None:
            await self.cache_client.delete_product(product_id)
        return SyncOutcome.REMOVED if removed else SyncOutcome.NOT_PRESENT

    @staticmethod
    def build_snapshot(
        event: LifecycleEvent, force_active: bool = False
    ) -> ProductSnapshot:
        """Build a cache entry from the event payload.

        Envelope fields fill in whatever the payload leaves out.
        """
        data: Dict[str, Any] = dict(event.payload)
        if not data.get("id"):
            data["id"] = event.product_id
        for field in ("sku", "name", "status"):
            if data.get(field) is None and getattr(event, field) is not None:
                data[field] = getattr(event, field)
        if force_active:
            data["status"] = ACTIVE_STATUS

        try:
            return ProductSnapshot.model_validate(data)
        except ValidationError as e:
            raise MalformedEventError(
                f"Product payload is invalid: {e.error_count()} error(s)",
                details={
                    "product_id": event.product_id,
                    "errors": e.errors(include_url=False),
                },
            ) from e

    async def health_check(self) -> Dict[str, Any]:
        health = await self.repository.health_check()
        if self.cache_client is not None:
            health["remote_cache"] = await self.cache_client.health_check()
        return health
