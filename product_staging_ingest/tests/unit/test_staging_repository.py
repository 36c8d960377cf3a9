"""
Unit tests for StagingProductRepository against SQLite
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from product_staging_ingest.app.core.exceptions import NonActiveProductError
from product_staging_ingest.app.models.base import utc_now
from product_staging_ingest.app.models.product import StagingProduct
from product_staging_ingest.app.repository.staging_product_repository import (
    compute_source_version,
)
from product_staging_ingest.app.schemas.product import ProductSnapshot


def snapshot(product_payload, **overrides) -> ProductSnapshot:
    return ProductSnapshot.model_validate({**product_payload, **overrides})


class TestUpsert:
    @pytest.mark.asyncio
    async def test_upsert_inserts_active_product(self, repository, product_payload):
        stored = await repository.upsert(snapshot(product_payload))

        assert stored.synced_at is not None
        assert stored.source_version == compute_source_version(stored)

        cached = await repository.get_by_id("prod-001")
        assert cached is not None
        assert cached.sku == "SKU-001"
        assert cached.name == "Widget"
        assert cached.base_price == Decimal("19.99")
        assert cached.web_display_flag is True
        assert cached.categorization == [{"category": "tools"}]
        assert cached.created_by == "alice"
        assert cached.updated_at == datetime(2026, 1, 2)

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, repository, product_payload):
        entry = snapshot(product_payload)

        await repository.upsert(entry)
        first = await repository.get_by_id("prod-001")
        await repository.upsert(entry)
        second = await repository.get_by_id("prod-001")

        assert await repository.count() == 1
        assert first.model_dump(exclude={"synced_at"}) == second.model_dump(
            exclude={"synced_at"}
        )
        assert second.synced_at >= first.synced_at

    @pytest.mark.asyncio
    async def test_upsert_overwrites_all_fields(self, repository, product_payload):
        await repository.upsert(snapshot(product_payload))
        await repository.upsert(
            snapshot(
                product_payload,
                name="Widget Pro",
                basePrice="24.00",
                updatedAt="2026-01-03T00:00:00Z",
            )
        )

        cached = await repository.get_by_id("prod-001")
        assert cached.name == "Widget Pro"
        assert cached.base_price == Decimal("24.00")
        assert await repository.count() == 1

    @pytest.mark.asyncio
    async def test_upsert_rejects_non_active(self, repository, product_payload):
        with pytest.raises(NonActiveProductError) as exc_info:
            await repository.upsert(snapshot(product_payload, status="draft"))

        assert exc_info.value.product_id == "prod-001"
        assert exc_info.value.status == "draft"
        assert await repository.count() == 0

    @pytest.mark.asyncio
    async def test_older_update_does_not_overwrite_newer(
        self, repository, product_payload
    ):
        await repository.upsert(
            snapshot(product_payload, name="Newer", updatedAt="2026-02-01T00:00:00Z")
        )
        stored = await repository.upsert(
            snapshot(product_payload, name="Older", updatedAt="2026-01-15T00:00:00Z")
        )

        assert stored is None
        cached = await repository.get_by_id("prod-001")
        assert cached.name == "Newer"

    @pytest.mark.asyncio
    async def test_missing_updated_at_always_overwrites(
        self, repository, product_payload
    ):
        await repository.upsert(snapshot(product_payload))
        await repository.upsert(snapshot(product_payload, name="Renamed", updatedAt=None))

        cached = await repository.get_by_id("prod-001")
        assert cached.name == "Renamed"
        assert cached.updated_at is None


class TestBulkUpsert:
    @pytest.mark.asyncio
    async def test_bulk_upsert_skips_non_active(self, repository, product_payload):
        entries = [
            snapshot(product_payload, id=f"prod-{i:03d}", sku=f"SKU-{i:03d}")
            for i in range(5)
        ]
        entries.append(snapshot(product_payload, id="prod-draft", status="draft"))

        written = await repository.bulk_upsert(entries)

        assert written == 5
        assert await repository.count() == 5
        assert await repository.get_by_id("prod-draft") is None

    @pytest.mark.asyncio
    async def test_bulk_upsert_handles_multiple_chunks(
        self, repository, product_payload
    ):
        entries = [
            snapshot(product_payload, id=f"prod-{i:04d}", sku=f"SKU-{i:04d}")
            for i in range(230)
        ]

        assert await repository.bulk_upsert(entries) == 230
        assert await repository.count() == 230

    @pytest.mark.asyncio
    async def test_bulk_upsert_empty(self, repository):
        assert await repository.bulk_upsert([]) == 0

    @pytest.mark.asyncio
    async def test_bulk_upsert_repeated_id_keeps_last(self, repository, product_payload):
        written = await repository.bulk_upsert(
            [
                snapshot(product_payload, name="First"),
                snapshot(product_payload, id="prod-002", sku="SKU-002"),
                snapshot(product_payload, name="Last"),
            ]
        )

        assert written == 2
        assert (await repository.get_by_id("prod-001")).name == "Last"

    @pytest.mark.asyncio
    async def test_bulk_upsert_counts_only_applied_rows(
        self, repository, product_payload
    ):
        await repository.upsert(snapshot(product_payload, updatedAt="2026-03-01T00:00:00Z"))

        written = await repository.bulk_upsert(
            [
                snapshot(product_payload, updatedAt="2026-01-01T00:00:00Z"),
                snapshot(product_payload, id="prod-002", sku="SKU-002"),
            ]
        )

        assert written == 1


class TestReplaceAll:
    @pytest.mark.asyncio
    async def test_replace_all_swaps_contents(self, repository, product_payload):
        await repository.upsert(snapshot(product_payload, id="old", sku="OLD"))

        result = await repository.replace_all(
            [
                snapshot(product_payload, id="a", sku="A"),
                snapshot(product_payload, id="a", sku="A", name="Again"),
                snapshot(product_payload, id="b", sku="B", status="draft"),
            ]
        )

        assert result == {"removed": 1, "written": 1}
        assert await repository.get_by_id("old") is None
        assert (await repository.get_by_id("a")).name == "Again"

    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_contents(
        self, repository, product_payload
    ):
        await repository.upsert(snapshot(product_payload))

        def failing_statement(session, rows):
            raise ConnectionError("database went away")

        repository._upsert_statement = failing_statement

        with pytest.raises(ConnectionError):
            await repository.replace_all([snapshot(product_payload, id="a", sku="A")])

        assert await repository.count() == 1
        assert await repository.get_by_id("prod-001") is not None


class TestRemove:
    @pytest.mark.asyncio
    async def test_remove_existing(self, repository, product_payload):
        await repository.upsert(snapshot(product_payload))

        assert await repository.remove("prod-001") is True
        assert await repository.get_by_id("prod-001") is None

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, repository, product_payload):
        await repository.upsert(snapshot(product_payload))

        assert await repository.remove("prod-001") is True
        assert await repository.remove("prod-001") is False
        assert await repository.count() == 0

    @pytest.mark.asyncio
    async def test_remove_by_sku(self, repository, product_payload):
        await repository.upsert(snapshot(product_payload))

        assert await repository.get_by_sku("SKU-001") is not None
        assert await repository.remove_by_sku("SKU-001") is True
        assert await repository.remove_by_sku("SKU-001") is False

    @pytest.mark.asyncio
    async def test_clear_returns_removed_count(self, repository, product_payload):
        await repository.bulk_upsert(
            [
                snapshot(product_payload, id=f"prod-{i}", sku=f"SKU-{i}")
                for i in range(3)
            ]
        )

        assert await repository.clear() == 3
        assert await repository.count() == 0


class TestSyncStatus:
    @pytest.mark.asyncio
    async def test_empty_cache_is_healthy(self, repository):
        status = await repository.get_sync_status()

        assert status.total_cached_products == 0
        assert status.is_healthy is True
        assert status.issues == []

    @pytest.mark.asyncio
    async def test_fresh_entries_are_healthy(self, repository, product_payload):
        await repository.upsert(snapshot(product_payload))

        status = await repository.get_sync_status()

        assert status.total_cached_products == 1
        assert status.stale_products == 0
        assert status.is_healthy is True
        assert status.last_sync_at is not None

    @pytest.mark.asyncio
    async def test_detects_stale_entries(self, repository, product_payload):
        await repository.upsert(snapshot(product_payload))

        status = await repository.get_sync_status(now=utc_now() + timedelta(hours=25))

        assert status.is_healthy is False
        assert status.stale_products == 1
        assert status.issues == ["1 products have stale cache data (>24h)"]

    @pytest.mark.asyncio
    async def test_detects_missing_sync_timestamps(
        self, repository, database_manager, product_payload
    ):
        row = snapshot(product_payload).to_row()
        row["source_version"] = "legacy"
        async with database_manager.async_session_maker() as session:
            session.add(StagingProduct(**row))
            await session.commit()

        status = await repository.get_sync_status()

        assert status.is_healthy is False
        assert status.products_without_sync == 1
        assert "1 products missing sync timestamps" in status.issues

    @pytest.mark.asyncio
    async def test_every_row_is_active(self, repository, database_manager, product_payload):
        await repository.bulk_upsert(
            [
                snapshot(product_payload, id="a", sku="A"),
                snapshot(product_payload, id="b", sku="B", status="inactive"),
            ]
        )

        async with database_manager.async_session_maker() as session:
            statuses = (await session.execute(select(StagingProduct.status))).scalars()
            assert set(statuses) == {"active"}


class TestAnalyticsAndHealth:
    @pytest.mark.asyncio
    async def test_analytics(self, repository, product_payload):
        await repository.bulk_upsert(
            [
                snapshot(product_payload, id="a", sku="A", basePrice="10.00"),
                snapshot(
                    product_payload,
                    id="b",
                    sku="B",
                    basePrice="30.00",
                    type="Software",
                    webDisplayFlag=False,
                ),
            ]
        )

        analytics = await repository.get_analytics()

        assert analytics.total_products == 2
        assert analytics.active_products == 2
        assert analytics.web_display_products == 1
        assert analytics.product_types == 2
        assert analytics.average_base_price == Decimal("20.00")
        assert analytics.total_active_value == Decimal("40.00")
        assert await repository.get_product_types() == ["Hardware", "Software"]

    @pytest.mark.asyncio
    async def test_health_check_healthy(self, repository, product_payload):
        await repository.upsert(snapshot(product_payload))

        health = await repository.health_check()

        assert health["status"] == "healthy"
        assert health["database"]["connected"] is True
        assert health["stats"]["cached_products"] == 1

    @pytest.mark.asyncio
    async def test_health_check_reports_unreachable_store(self, repository):
        async def broken_ping():
            raise ConnectionError("database unavailable")

        repository.ping = broken_ping

        health = await repository.health_check()

        assert health["status"] == "error"
        assert health["database"]["connected"] is False
