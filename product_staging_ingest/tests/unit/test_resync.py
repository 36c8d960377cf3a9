"""
Unit tests for the full staging cache resync
"""

import json

import pytest

from product_staging_ingest.app.core.exceptions import MalformedEventError
from product_staging_ingest.app.resync import load_snapshots, resync
from product_staging_ingest.app.schemas.product import ProductSnapshot


class TestLoadSnapshots:
    def test_loads_array(self, tmp_path, product_payload):
        path = tmp_path / "products.json"
        path.write_text(json.dumps([product_payload]), encoding="utf-8")

        snapshots = load_snapshots(path)

        assert [s.id for s in snapshots] == ["prod-001"]

    def test_rejects_non_array(self, tmp_path):
        path = tmp_path / "products.json"
        path.write_text(json.dumps({"products": []}), encoding="utf-8")

        with pytest.raises(MalformedEventError):
            load_snapshots(path)

    def test_rejects_invalid_entry(self, tmp_path, product_payload):
        path = tmp_path / "products.json"
        path.write_text(
            json.dumps([product_payload, {"name": "no identity"}]), encoding="utf-8"
        )

        with pytest.raises(MalformedEventError) as exc_info:
            load_snapshots(path)

        assert exc_info.value.details["index"] == 1


class TestResync:
    @pytest.mark.asyncio
    async def test_resync_replaces_cache_contents(self, repository, product_payload):
        await repository.upsert(
            ProductSnapshot.model_validate({**product_payload, "id": "stale", "sku": "OLD"})
        )
        snapshots = [
            ProductSnapshot.model_validate({**product_payload, "id": "a", "sku": "A"}),
            ProductSnapshot.model_validate({**product_payload, "id": "b", "sku": "B"}),
            ProductSnapshot.model_validate(
                {**product_payload, "id": "c", "sku": "C", "status": "draft"}
            ),
        ]

        summary = await resync(repository, snapshots)

        assert summary == {
            "loaded": 3,
            "removed": 1,
            "written": 2,
            "skipped": 1,
        }
        assert await repository.get_by_id("stale") is None
        assert await repository.count() == 2

    @pytest.mark.asyncio
    async def test_repeated_ids_are_written_once(self, repository, product_payload):
        snapshots = [
            ProductSnapshot.model_validate({**product_payload, "name": "First"}),
            ProductSnapshot.model_validate({**product_payload, "name": "Second"}),
        ]

        summary = await resync(repository, snapshots)

        assert summary["written"] == 1
        assert summary["skipped"] == 1
        assert (await repository.get_by_id("prod-001")).name == "Second"

    @pytest.mark.asyncio
    async def test_failed_resync_leaves_cache_untouched(
        self, repository, product_payload
    ):
        await repository.upsert(ProductSnapshot.model_validate(product_payload))

        def failing_statement(session, rows):
            raise ConnectionError("database went away")

        repository._upsert_statement = failing_statement

        with pytest.raises(ConnectionError):
            await resync(
                repository,
                [ProductSnapshot.model_validate({**product_payload, "id": "new"})],
            )

        assert await repository.get_by_id("prod-001") is not None
