from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..events.schemas import LifecycleEvent


class ProductNotification(BaseModel):
    """Real-time notice sent to UI rooms after a product was synced"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event_type: str
    product_id: Optional[str] = None
    sku: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    processing_time: Optional[float] = None
    subject: str = ""
    source: str = "product-staging-ingest"

    @classmethod
    def from_event(
        cls, event: LifecycleEvent, processing_time_ms: Optional[float] = None
    ) -> "ProductNotification":
        return cls(
            event_type=event.event_type,
            product_id=event.product_id,
            sku=event.sku,
            name=event.name,
            status=event.status,
            processing_time=processing_time_ms,
            subject=event.subject,
        )

    def to_message(self, event_name: str) -> Dict[str, Any]:
        return {"event": event_name, "data": self.model_dump(mode="json", by_alias=True)}
