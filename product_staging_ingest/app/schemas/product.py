from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize aware datetimes to naive UTC, the form stored in the cache."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class ProductSnapshot(BaseModel):
    """Cache entry built from a lifecycle event payload.

    Accepts the upstream camelCase payload (``basePrice``, ``webDisplayFlag``)
    as well as snake_case field names. ``null`` values fall back to defaults,
    the same way the publisher's optional fields are treated.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1, validation_alias=AliasChoices("id", "productId"))
    sku: str = Field(..., min_length=1, validation_alias=AliasChoices("sku", "skuCode"))
    name: str = ""
    description: Optional[str] = None
    long_description: str = Field("", alias="longDescription")
    type: str = "Unknown"
    status: str = ""
    slug: str = ""
    ava_tax_code: str = Field("", alias="avaTaxCode")

    base_price: Decimal = Field(Decimal("0"), alias="basePrice")
    cost_price: Decimal = Field(Decimal("0"), alias="costPrice")

    available_flag: bool = Field(True, alias="availableFlag")
    web_display_flag: bool = Field(False, alias="webDisplayFlag")
    license_required_flag: bool = Field(False, alias="licenseRequiredFlag")
    seat_based_pricing_flag: bool = Field(False, alias="seatBasedPricingFlag")
    can_be_fulfilled_flag: bool = Field(False, alias="canBeFulfilledFlag")
    contract_item_flag: bool = Field(False, alias="contractItemFlag")

    categorization: List[Any] = Field(default_factory=list)
    pricing: List[Any] = Field(default_factory=list)
    approvals: List[Any] = Field(default_factory=list)

    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")
    created_by: str = Field("system", alias="createdBy")
    updated_by: str = Field("system", alias="updatedBy")

    # Stamped by the repository on write
    synced_at: Optional[datetime] = Field(None, alias="syncedAt")
    source_version: Optional[str] = Field(None, alias="sourceVersion")

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data

    @field_validator("id", "sku", mode="before")
    @classmethod
    def coerce_identity(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("created_at", "updated_at", "synced_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_row(self) -> Dict[str, Any]:
        """Column values for the staging ``products`` table."""
        return self.model_dump(by_alias=False)

    def to_payload(self) -> Dict[str, Any]:
        """camelCase JSON body for the downstream product cache API."""
        return self.model_dump(mode="json", by_alias=True)


class SyncStatus(BaseModel):
    """Derived view over all cache entries. Computed on demand, never stored."""

    total_cached_products: int = 0
    last_sync_at: Optional[datetime] = None
    oldest_product_sync_at: Optional[datetime] = None
    newest_product_sync_at: Optional[datetime] = None
    stale_products: int = 0
    products_without_sync: int = 0
    staleness_threshold_hours: float = 24.0
    is_healthy: bool = True
    issues: List[str] = Field(default_factory=list)


class ProductAnalytics(BaseModel):
    total_products: int = 0
    active_products: int = 0
    available_products: int = 0
    web_display_products: int = 0
    licensed_products: int = 0
    contract_products: int = 0
    product_types: int = 0
    average_base_price: Decimal = Decimal("0")
    total_active_value: Decimal = Decimal("0")
    source: str = "product-staging"
