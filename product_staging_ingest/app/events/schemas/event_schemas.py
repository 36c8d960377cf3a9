"""
Product Lifecycle Event Schemas
===============================

Inbound lifecycle events published by Product MDM on ``product.>``.
The publisher has no schema version field, so parsing is lenient: the
product may be nested under ``data`` or sit at the top level.
"""

import json
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from ...core.exceptions import MalformedEventError

# ==============================================
# EVENT TYPE CONSTANTS
# ==============================================

PRODUCT_CREATED = "created"
PRODUCT_UPDATED = "updated"
PRODUCT_LAUNCHED = "launched"
PRODUCT_ACTIVATED = "activated"
PRODUCT_DEACTIVATED = "deactivated"
PRODUCT_DELETED = "deleted"

CUSTOMER_VISIBLE_ACTIONS = frozenset({PRODUCT_LAUNCHED, PRODUCT_ACTIVATED})

MSG_ID_HEADER = "Nats-Msg-Id"


def synthesize_correlation_id(event_type: str, product_id: Optional[str]) -> str:
    """Stable tracing id for events that arrive without one."""
    return f"corr-{event_type.replace('.', '-')}-{product_id or 'unknown'}"


class LifecycleEvent(BaseModel):
    """A product lifecycle event as received from the broker. Immutable."""

    model_config = ConfigDict(frozen=True)

    event_type: str
    correlation_id: str
    product_id: Optional[str] = None
    sku: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = None
    payload: Dict[str, Any]
    delivery_count: int = 1
    subject: str = ""

    @property
    def action(self) -> str:
        """Last segment of the event type: ``product.updated`` -> ``updated``."""
        return self.event_type.rsplit(".", 1)[-1].strip().lower()

    @property
    def retry_count(self) -> int:
        return max(self.delivery_count - 1, 0)

    @classmethod
    def from_dict(
        cls,
        raw: Mapping[str, Any],
        subject: str = "",
        delivery_count: int = 1,
        message_id: Optional[str] = None,
    ) -> "LifecycleEvent":
        data = raw.get("data")
        payload: Dict[str, Any] = dict(data) if isinstance(data, Mapping) else dict(raw)

        event_type = raw.get("eventType") or subject
        if not isinstance(event_type, str) or not event_type:
            raise MalformedEventError(
                "Lifecycle event has no eventType", details={"subject": subject}
            )

        product_id = raw.get("productId") or payload.get("id") or payload.get("productId")
        product_id = str(product_id) if product_id not in (None, "") else None

        correlation_id = (
            raw.get("correlationId")
            or raw.get("messageId")
            or message_id
            or synthesize_correlation_id(event_type, product_id)
        )

        sku = payload.get("sku") or payload.get("skuCode") or raw.get("sku")
        try:
            return cls(
                event_type=event_type,
                correlation_id=str(correlation_id),
                product_id=product_id,
                sku=str(sku) if sku is not None else None,
                name=payload.get("name") or raw.get("name"),
                status=payload.get("status") or raw.get("status"),
                payload=payload,
                delivery_count=delivery_count,
                subject=subject,
            )
        except ValidationError as e:
            raise MalformedEventError(
                f"Lifecycle event fields are invalid: {e.error_count()} error(s)",
                details={"subject": subject, "errors": e.errors(include_url=False)},
            ) from e

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        subject: str = "",
        delivery_count: int = 1,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "LifecycleEvent":
        try:
            raw = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedEventError(
                f"Lifecycle event is not valid JSON: {e}", details={"subject": subject}
            ) from e

        if not isinstance(raw, dict):
            raise MalformedEventError(
                "Lifecycle event must be a JSON object",
                details={"subject": subject, "type": type(raw).__name__},
            )

        message_id = headers.get(MSG_ID_HEADER) if headers else None
        return cls.from_dict(
            raw, subject=subject, delivery_count=delivery_count, message_id=message_id
        )
