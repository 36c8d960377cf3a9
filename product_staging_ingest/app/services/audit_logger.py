"""
Central Message Logger
======================

Posts consumed and published message records to the central message log
(System API ``POST /messages``). Logging is not part of the sync result:
every failure is logged locally and reported as ``False``, never raised.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from ..events.schemas import LifecycleEvent
from ..schemas.audit import AuditRecord, MessageType
from ..utils.logging import get_logger

logger = get_logger("product_staging_ingest.audit")


class CentralMessageLogger:
    """Client for the central message log"""

    def __init__(
        self,
        system_api_url: str,
        source_system: str = "product-staging",
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = system_api_url.rstrip("/")
        self.source_system = source_system
        self.client = client or httpx.AsyncClient(
            timeout=timeout, headers={"User-Agent": "ProductStagingIngest/1.0"}
        )

    def build_record(
        self,
        message_type: MessageType,
        event: LifecycleEvent,
        correlation_id: Optional[str] = None,
        processing_time_ms: Optional[float] = None,
        error: Optional[str] = None,
    ) -> AuditRecord:
        return AuditRecord(
            message_type=message_type,
            source_system=self.source_system,
            event_type=event.event_type,
            correlation_id=correlation_id or event.correlation_id,
            product_id=event.product_id,
            product_sku=event.sku,
            product_name=event.name,
            message_payload={
                "productId": event.product_id,
                "action": event.action,
                "subject": event.subject,
                "deliveryCount": event.delivery_count,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "productData": event.payload,
            },
            processing_time_ms=processing_time_ms,
            retry_count=event.retry_count,
            error_message=error,
        )

    async def log_consumed(
        self,
        event: LifecycleEvent,
        correlation_id: Optional[str] = None,
        processing_time_ms: Optional[float] = None,
        error: Optional[str] = None,
    ) -> bool:
        record = self.build_record(
            "consumed", event, correlation_id, processing_time_ms, error
        )
        return await self.send(record)

    async def log_published(
        self,
        event: LifecycleEvent,
        correlation_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        record = self.build_record("published", event, correlation_id, error=error)
        return await self.send(record)

    async def send(self, record: AuditRecord) -> bool:
        """POST one record. Returns whether the central log accepted it."""
        log_extra: Dict[str, Any] = {
            "operation": "audit_log",
            "message_type": record.message_type,
            "event_type": record.event_type,
            "product_id": record.product_id,
            "correlation_id": record.correlation_id,
        }
        try:
            response = await self.client.post(
                f"{self.base_url}/messages", json=record.to_request_body()
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Error logging message to central system",
                extra={**log_extra, "error": str(e)},
            )
            return False

        if response.is_success:
            logger.debug("Logged message to central system", extra=log_extra)
            return True

        logger.warning(
            "Central system rejected message log",
            extra={
                **log_extra,
                "status_code": response.status_code,
                "response": response.text[:500],
            },
        )
        return False

    async def is_healthy(self) -> bool:
        try:
            response = await self.client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(
                "Central message log health check failed",
                extra={"operation": "audit_health", "error": str(e)},
            )
            return False

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()
