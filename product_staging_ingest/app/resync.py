"""
Full resync of the product staging cache.

Loads a JSON array of product payloads (the same shape carried by lifecycle
events), then clears the staging table and writes every active product in
one transaction, so a failed load leaves the previous contents in place.
Used to rebuild the cache after an outage longer than the stream retention.

    python -m product_staging_ingest.app.resync products.json
"""

import argparse
import asyncio
import json
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List

from pydantic import ValidationError

from .core.database import StagingDatabaseManager
from .core.exceptions import MalformedEventError
from .core.settings import get_settings
from .repository import StagingProductRepository
from .schemas.product import ProductSnapshot
from .utils.logging import get_logger

logger = get_logger("product_staging_ingest.resync")


def load_snapshots(path: Path) -> List[ProductSnapshot]:
    """Parse the export file. Invalid entries abort the resync before anything is cleared."""
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise MalformedEventError(
            "Resync file must contain a JSON array of products",
            details={"path": str(path)},
        )

    snapshots = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise MalformedEventError(
                "Resync entry is not a JSON object", details={"index": index}
            )
        try:
            snapshots.append(ProductSnapshot.model_validate(item))
        except ValidationError as e:
            raise MalformedEventError(
                f"Resync entry {index} is invalid: {e.error_count()} error(s)",
                details={"index": index, "errors": e.errors(include_url=False)},
            ) from e
    return snapshots


async def resync(
    repository: StagingProductRepository, snapshots: List[ProductSnapshot]
) -> Dict[str, Any]:
    result = await repository.replace_all(snapshots)
    summary = {
        "loaded": len(snapshots),
        "removed": result["removed"],
        "written": result["written"],
        # Non-active entries and repeated ids
        "skipped": len(snapshots) - result["written"],
    }
    logger.info("Staging cache resync completed", extra={"operation": "resync", **summary})
    return summary


async def _run(path: Path) -> Dict[str, Any]:
    settings = get_settings()
    snapshots = load_snapshots(path)

    database = StagingDatabaseManager(
        settings.STAGING_DATABASE_URL,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
    )
    try:
        await database.create_tables()
        repository = StagingProductRepository(
            database.async_session_maker,
            staleness_threshold=timedelta(hours=settings.STALENESS_THRESHOLD_HOURS),
        )
        return await resync(repository, snapshots)
    finally:
        await database.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Rebuild the product staging cache")
    parser.add_argument("path", type=Path, help="JSON file with an array of products")
    args = parser.parse_args()

    summary = asyncio.run(_run(args.path))
    print(json.dumps(summary))


if __name__ == "__main__":
    main()
