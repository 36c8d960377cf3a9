from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

MessageType = Literal["published", "consumed"]


class AuditRecord(BaseModel):
    """One row of the central message log. Written once, never updated."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message_type: MessageType
    source_system: str
    event_type: str
    correlation_id: str
    product_id: Optional[str] = None
    product_sku: Optional[str] = None
    product_name: Optional[str] = None
    message_payload: Dict[str, Any] = Field(default_factory=dict)
    processing_time_ms: Optional[float] = None
    retry_count: int = 0
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_request_body(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
