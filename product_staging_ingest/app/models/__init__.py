from .base import StagingBase
from .product import ACTIVE_STATUS, StagingProduct

__all__ = ["StagingBase", "StagingProduct", "ACTIVE_STATUS"]
