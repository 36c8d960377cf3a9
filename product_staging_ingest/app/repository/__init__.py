"""Repository layer for Product Staging Ingest"""

from .staging_product_repository import StagingProductRepository

__all__ = [
    "StagingProductRepository",
]
