"""Staging product repository: the only writer of the product staging cache"""

import hashlib
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import case, delete, distinct, func, or_, select, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.exceptions import NonActiveProductError
from ..models.base import utc_now
from ..models.product import StagingProduct
from ..schemas.product import ProductAnalytics, ProductSnapshot, SyncStatus
from ..utils.logging import get_logger

logger = get_logger("product_staging_ingest.repository")

# Keeps multi-row upserts under SQLite's bound-parameter limit
BULK_CHUNK_SIZE = 100

_PRODUCT_TABLE = StagingProduct.__table__
_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def compute_source_version(entry: ProductSnapshot) -> str:
    """Content hash over identity, price and last-modified time.

    Detects redundant writes; it is not a logical clock and is never used to
    order writes.
    """
    updated_at = entry.updated_at.isoformat() if entry.updated_at else ""
    content = f"{entry.id}|{entry.sku}|{entry.name}|{entry.base_price.normalize():f}|{updated_at}"
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


class StagingProductRepository:
    """Repository for the product staging cache table.

    Every row in the table is an active product. Writes use
    insert-or-overwrite semantics and are safe to repeat.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        staleness_threshold: timedelta = timedelta(hours=24),
    ):
        self.session_maker = session_maker
        self.staleness_threshold = staleness_threshold

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(self, entry: ProductSnapshot) -> Optional[ProductSnapshot]:
        """Insert the entry, or overwrite all fields if the id exists.

        Raises NonActiveProductError for anything but an active product.
        An incoming entry older than the stored one (by ``updated_at``) does
        not overwrite it; ``None`` is returned and nothing was written.
        """
        if not entry.is_active:
            raise NonActiveProductError(entry.id, entry.status)

        stamped = self._stamp(entry)
        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    self._upsert_statement(session, [stamped.to_row()])
                )
                written = result.first() is not None

        log_extra = {
            "operation": "upsert",
            "product_id": stamped.id,
            "sku": stamped.sku,
            "source_version": stamped.source_version,
            "updated_at": stamped.updated_at,
        }
        if not written:
            logger.info(
                "Stored product is newer, out-of-order update not applied",
                extra=log_extra,
            )
            return None

        logger.info("Upserted product to staging cache", extra=log_extra)
        return stamped

    async def bulk_upsert(self, entries: Iterable[ProductSnapshot]) -> int:
        """Upsert many entries in one transaction.

        Non-active entries are skipped and repeated ids collapse to the last
        occurrence. Returns the number of rows actually written.
        """
        rows, skipped = self._prepare_rows(entries)

        written = 0
        if rows:
            async with self.session_maker() as session:
                async with session.begin():
                    written = await self._write_rows(session, rows)

        logger.info(
            "Bulk upserted products to staging cache",
            extra={"operation": "bulk_upsert", "written": written, "skipped": skipped},
        )
        return written

    async def replace_all(self, entries: Iterable[ProductSnapshot]) -> Dict[str, int]:
        """Clear the table and write ``entries`` in a single transaction.

        A failed write rolls back the clear as well, so the previous contents
        stay in place.
        """
        rows, skipped = self._prepare_rows(entries)

        async with self.session_maker() as session:
            async with session.begin():
                removed = (await session.execute(delete(StagingProduct))).rowcount
                written = await self._write_rows(session, rows) if rows else 0

        logger.warning(
            "Replaced staging cache contents",
            extra={
                "operation": "replace_all",
                "removed": removed,
                "written": written,
                "skipped": skipped,
            },
        )
        return {"removed": removed, "written": written}

    async def remove(self, product_id: str) -> bool:
        """Delete by id. Returns whether a row existed; absence is not an error."""
        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    delete(StagingProduct).where(StagingProduct.id == product_id)
                )
        removed = result.rowcount > 0
        logger.info(
            "Removed product from staging cache"
            if removed
            else "Product was not in staging cache",
            extra={"operation": "remove", "product_id": product_id, "removed": removed},
        )
        return removed

    async def remove_by_sku(self, sku: str) -> bool:
        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    delete(StagingProduct).where(StagingProduct.sku == sku)
                )
        removed = result.rowcount > 0
        logger.info(
            "Removed product from staging cache by SKU"
            if removed
            else "SKU was not in staging cache",
            extra={"operation": "remove_by_sku", "sku": sku, "removed": removed},
        )
        return removed

    async def clear(self) -> int:
        """Remove every row. Never called from the event path."""
        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(delete(StagingProduct))
        logger.warning(
            "Cleared staging cache",
            extra={"operation": "clear", "removed": result.rowcount},
        )
        return result.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_by_id(self, product_id: str) -> Optional[ProductSnapshot]:
        async with self.session_maker() as session:
            row = await session.get(StagingProduct, product_id)
            return self._to_snapshot(row) if row else None

    async def get_by_sku(self, sku: str) -> Optional[ProductSnapshot]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(StagingProduct).where(StagingProduct.sku == sku)
            )
            row = result.scalars().first()
            return self._to_snapshot(row) if row else None

    async def count(self) -> int:
        async with self.session_maker() as session:
            result = await session.execute(select(func.count(StagingProduct.id)))
            return int(result.scalar_one())

    async def get_product_types(self) -> List[str]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(distinct(StagingProduct.type))
                .where(StagingProduct.type != "")
                .order_by(StagingProduct.type)
            )
            return list(result.scalars().all())

    async def get_analytics(self) -> ProductAnalytics:
        """Aggregate counts and price totals over the cached products."""

        def flag_count(column: Any) -> Any:
            return func.sum(case((column.is_(True), 1), else_=0))

        query = select(
            func.count(StagingProduct.id),
            flag_count(StagingProduct.available_flag),
            flag_count(StagingProduct.web_display_flag),
            flag_count(StagingProduct.license_required_flag),
            flag_count(StagingProduct.contract_item_flag),
            func.count(distinct(case((StagingProduct.type != "", StagingProduct.type)))),
            func.avg(StagingProduct.base_price),
            func.sum(StagingProduct.base_price),
        )
        async with self.session_maker() as session:
            row = (await session.execute(query)).one()

        total = int(row[0] or 0)
        return ProductAnalytics(
            total_products=total,
            # Only active products are ever cached
            active_products=total,
            available_products=int(row[1] or 0),
            web_display_products=int(row[2] or 0),
            licensed_products=int(row[3] or 0),
            contract_products=int(row[4] or 0),
            product_types=int(row[5] or 0),
            average_base_price=_to_money(row[6]),
            total_active_value=_to_money(row[7]),
        )

    async def get_sync_status(self, now: Optional[datetime] = None) -> SyncStatus:
        """Flag entries not synced within the staleness threshold."""
        now = now or utc_now()
        stale_before = now - self.staleness_threshold
        threshold_hours = self.staleness_threshold.total_seconds() / 3600

        query = select(
            func.count(StagingProduct.id),
            func.min(StagingProduct.synced_at),
            func.max(StagingProduct.synced_at),
            func.sum(case((StagingProduct.synced_at < stale_before, 1), else_=0)),
            func.sum(case((StagingProduct.synced_at.is_(None), 1), else_=0)),
        )
        async with self.session_maker() as session:
            total, oldest, newest, stale, missing = (await session.execute(query)).one()

        stale = int(stale or 0)
        missing = int(missing or 0)
        issues: List[str] = []
        if stale > 0:
            issues.append(
                f"{stale} products have stale cache data (>{threshold_hours:g}h)"
            )
        if missing > 0:
            issues.append(f"{missing} products missing sync timestamps")

        return SyncStatus(
            total_cached_products=int(total or 0),
            last_sync_at=newest,
            oldest_product_sync_at=oldest,
            newest_product_sync_at=newest,
            stale_products=stale,
            products_without_sync=missing,
            staleness_threshold_hours=threshold_hours,
            is_healthy=not issues,
            issues=issues,
        )

    async def ping(self) -> bool:
        async with self.session_maker() as session:
            await session.execute(text("SELECT 1"))
        return True

    async def health_check(self) -> Dict[str, Any]:
        """Connectivity, sync status and counts in one report.

        ``healthy``: reachable and no sync issues. ``degraded``: reachable
        but stale or unsynced entries exist. ``error``: store unreachable.
        """
        timestamp = utc_now().isoformat()
        try:
            await self.ping()
            sync_status = await self.get_sync_status()
            analytics = await self.get_analytics()
            product_types = await self.get_product_types()
        except Exception as e:
            logger.warning(
                "Staging cache health check failed",
                extra={"operation": "health_check", "error": str(e)},
            )
            return {
                "status": "error",
                "service": "StagingProductRepository",
                "timestamp": timestamp,
                "database": {"status": "error", "connected": False, "error": str(e)},
            }

        return {
            "status": "healthy" if sync_status.is_healthy else "degraded",
            "service": "StagingProductRepository",
            "timestamp": timestamp,
            "database": {
                "status": "healthy",
                "connected": True,
                "record_count": analytics.total_products,
            },
            "cache": {
                "status": "healthy" if sync_status.is_healthy else "degraded",
                "last_sync": sync_status.last_sync_at,
                "is_healthy": sync_status.is_healthy,
                "issues": sync_status.issues,
            },
            "stats": {
                "cached_products": analytics.total_products,
                "active_products": analytics.active_products,
                "total_product_types": len(product_types),
            },
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _stamp(entry: ProductSnapshot) -> ProductSnapshot:
        return entry.model_copy(
            update={
                "synced_at": utc_now(),
                "source_version": compute_source_version(entry),
            }
        )

    def _prepare_rows(
        self, entries: Iterable[ProductSnapshot]
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Stamped rows for the active entries, one per id, last one wins."""
        entries = list(entries)
        rows: Dict[str, Dict[str, Any]] = {}
        for entry in entries:
            if entry.is_active:
                rows[entry.id] = self._stamp(entry).to_row()
        return list(rows.values()), len(entries) - len(rows)

    async def _write_rows(
        self, session: AsyncSession, rows: List[Dict[str, Any]]
    ) -> int:
        written = 0
        for start in range(0, len(rows), BULK_CHUNK_SIZE):
            chunk = rows[start : start + BULK_CHUNK_SIZE]
            result = await session.execute(self._upsert_statement(session, chunk))
            written += len(result.all())
        return written

    @staticmethod
    def _upsert_statement(session: AsyncSession, rows: List[Dict[str, Any]]) -> Any:
        dialect_name = session.bind.dialect.name
        if dialect_name not in _INSERTS:
            raise NotImplementedError(f"Upsert not supported for {dialect_name}")

        stmt = _INSERTS[dialect_name](StagingProduct).values(rows)
        excluded = stmt.excluded
        updates = {
            column.name: excluded[column.name]
            for column in _PRODUCT_TABLE.columns
            if column.name != "id"
        }
        # Out-of-order guard: never replace a row with an older source update
        not_older = or_(
            _PRODUCT_TABLE.c.updated_at.is_(None),
            excluded.updated_at.is_(None),
            excluded.updated_at >= _PRODUCT_TABLE.c.updated_at,
        )
        # Rows skipped by the guard are not returned
        return stmt.on_conflict_do_update(
            index_elements=[_PRODUCT_TABLE.c.id], set_=updates, where=not_older
        ).returning(_PRODUCT_TABLE.c.id)

    @staticmethod
    def _to_snapshot(row: StagingProduct) -> ProductSnapshot:
        return ProductSnapshot.model_validate(
            {column.name: getattr(row, column.name) for column in _PRODUCT_TABLE.columns}
        )


def _to_money(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value)).quantize(Decimal("0.01"))
