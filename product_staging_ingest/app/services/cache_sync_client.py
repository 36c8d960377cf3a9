"""
API client for the downstream Product Cache service.

Mirrors staging cache writes into the remote read-optimized store. A missing
product on delete counts as success, so every call is safe to repeat.
"""

from typing import Any, Dict

import httpx

from ..core.exceptions import CacheSyncError
from ..schemas.product import ProductSnapshot
from ..utils.logging import get_logger

logger = get_logger("product_staging_ingest.cache_sync_client")


class ProductCacheClient:
    """Client for pushing product snapshots to the Product Cache API"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def upsert_product(self, product: ProductSnapshot) -> None:
        """PUT the full snapshot; the remote side overwrites by id."""
        try:
            response = await self.client.put(
                f"{self.base_url}/products/{product.id}", json=product.to_payload()
            )
        except httpx.HTTPError as e:
            raise CacheSyncError(
                f"Product cache unreachable: {e}", product_id=product.id
            ) from e

        if response.status_code >= 400:
            raise CacheSyncError(
                f"Product cache rejected upsert with {response.status_code}",
                status_code=response.status_code,
                product_id=product.id,
            )

        logger.debug(
            "Pushed product to remote cache",
            extra={"operation": "remote_upsert", "product_id": product.id},
        )

    async def delete_product(self, product_id: str) -> bool:
        """DELETE by id. Returns False when the remote cache never had it."""
        try:
            response = await self.client.delete(f"{self.base_url}/products/{product_id}")
        except httpx.HTTPError as e:
            raise CacheSyncError(
                f"Product cache unreachable: {e}", product_id=product_id
            ) from e

        if response.status_code == 404:
            return False
        if response.status_code >= 400:
            raise CacheSyncError(
                f"Product cache rejected delete with {response.status_code}",
                status_code=response.status_code,
                product_id=product_id,
            )

        logger.debug(
            "Removed product from remote cache",
            extra={"operation": "remote_delete", "product_id": product_id},
        )
        return True

    async def health_check(self) -> Dict[str, Any]:
        try:
            response = await self.client.get(f"{self.base_url}/health")
        except httpx.HTTPError as e:
            return {"status": "unhealthy", "url": self.base_url, "error": str(e)}

        return {
            "status": "healthy" if response.status_code == 200 else "unhealthy",
            "url": self.base_url,
            "status_code": response.status_code,
        }

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()
