"""
Product Staging Event Consumer
==============================

Pulls product lifecycle events from the JetStream durable consumer and hands
them to the lifecycle sync handler, one message at a time.

Delivery policy:
    success                              -> ack
    failure, delivery < max deliveries   -> nak, redelivered after a backoff
    failure, delivery >= max deliveries  -> dead-letter, then term

Every message is submitted to the audit sidecar before it is processed, with
its delivery count, so redeliveries show up in the audit trail.
"""

import asyncio
import time
from typing import Any, Dict, Optional

import nats.errors
from nats.aio.msg import Msg

from ..schemas.notification import ProductNotification
from ..services.audit_sidecar import AuditSidecar
from ..services.lifecycle_sync_service import SyncOutcome
from ..utils.logging import get_logger
from .base import EventHandler, HealthCheckable
from .base.nats_client import JetStreamConnection
from .schemas import LifecycleEvent, synthesize_correlation_id

logger = get_logger("product_staging_ingest.events.consumers")

DEAD_LETTER_ERROR_HEADER = "Staging-Error"
DEAD_LETTER_SUBJECT_HEADER = "Staging-Original-Subject"
DEAD_LETTER_DELIVERIES_HEADER = "Staging-Delivery-Count"


class ProductLifecycleConsumer:
    """Single sequential pull loop over the product lifecycle durable"""

    def __init__(
        self,
        connection: JetStreamConnection,
        handler: EventHandler,
        sidecar: AuditSidecar,
        max_deliveries: int = 3,
        batch_size: int = 1,
        pull_wait: float = 5.0,
        nak_delay: float = 2.0,
        error_backoff: float = 5.0,
        dead_letter_subject: Optional[str] = None,
    ):
        self.connection = connection
        self.handler = handler
        self.sidecar = sidecar
        self.max_deliveries = max_deliveries
        self.batch_size = batch_size
        self.pull_wait = pull_wait
        self.nak_delay = nak_delay
        self.error_backoff = error_backoff
        self.dead_letter_subject = dead_letter_subject

        self.subscription = None
        self.task: Optional[asyncio.Task] = None
        self.running = False

        self.processed = 0
        self.failed = 0
        self.dead_lettered = 0

    async def start(self) -> None:
        """Connect, bind the durable and start the pull loop in the background"""
        if self.running:
            logger.warning(
                "Message processing is already running",
                extra={"operation": "consumer_start"},
            )
            return

        if not self.connection.is_connected:
            await self.connection.connect()
        self.subscription = await self.connection.pull_subscribe()

        self.running = True
        self.task = asyncio.create_task(self.run(), name="product-lifecycle-consumer")
        logger.info(
            "Started consuming product lifecycle events",
            extra={
                "operation": "consumer_start",
                "stream": self.connection.stream_name,
                "consumer": self.connection.bound_consumer,
            },
        )

    async def run(self) -> None:
        """Pull loop. Exits once ``running`` is cleared and the batch in hand is done."""
        while self.running:
            try:
                messages = await self.subscription.fetch(
                    batch=self.batch_size, timeout=self.pull_wait
                )
            except nats.errors.TimeoutError:
                # Nothing to pull
                continue
            except Exception as e:
                logger.error(
                    "Error in message processing loop",
                    extra={"operation": "consumer_loop", "error": str(e)},
                    exc_info=True,
                )
                await asyncio.sleep(self.error_backoff)
                continue

            for msg in messages:
                await self.handle_message(msg)

        logger.info("Message processing loop stopped", extra={"operation": "consumer_loop"})

    async def handle_message(self, msg: Msg) -> Any:
        """Process one message and settle it with the broker."""
        started = time.monotonic()
        delivery_count = msg.metadata.num_delivered or 1

        parse_error: Optional[Exception] = None
        try:
            event = LifecycleEvent.from_bytes(
                msg.data,
                subject=msg.subject,
                delivery_count=delivery_count,
                headers=msg.headers,
            )
        except Exception as e:
            parse_error = e
            event = self._unparsed_event(msg, delivery_count)

        self.sidecar.submit_consumed(event)

        log_extra = {
            "event_type": event.event_type,
            "product_id": event.product_id,
            "correlation_id": event.correlation_id,
            "delivery_count": delivery_count,
            "subject": msg.subject,
        }
        logger.info(
            "Received lifecycle event", extra={**log_extra, "operation": "consume"}
        )

        try:
            if parse_error is not None:
                raise parse_error
            outcome = await self.handler.handle(event)
        except Exception as e:
            elapsed_ms = _elapsed_ms(started)
            self.sidecar.submit_consumed(event, elapsed_ms, error=str(e))
            await self._reject(msg, event, e)
            return None

        elapsed_ms = _elapsed_ms(started)
        await self._ack(msg, log_extra)
        self.processed += 1

        self.sidecar.submit_consumed(event, elapsed_ms)
        if outcome not in (SyncOutcome.SKIPPED, SyncOutcome.STALE):
            self.sidecar.submit_notification(
                ProductNotification.from_event(event, elapsed_ms)
            )

        logger.info(
            "Message processed and acknowledged",
            extra={
                **log_extra,
                "operation": "consume",
                "outcome": getattr(outcome, "value", outcome),
                "processing_time_ms": elapsed_ms,
            },
        )
        return outcome

    async def _ack(self, msg: Msg, log_extra: Dict[str, Any]) -> None:
        try:
            await msg.ack()
        except Exception as e:
            # Unacked messages come back after the ack wait; writes are idempotent
            logger.error(
                "Failed to acknowledge message",
                extra={**log_extra, "operation": "ack", "error": str(e)},
            )

    async def _reject(
        self, msg: Msg, event: LifecycleEvent, error: Exception
    ) -> None:
        delivery_count = event.delivery_count
        log_extra = {
            "event_type": event.event_type,
            "product_id": event.product_id,
            "correlation_id": event.correlation_id,
            "delivery_count": delivery_count,
            "max_deliveries": self.max_deliveries,
            "error": str(error),
            "error_type": type(error).__name__,
        }

        try:
            if delivery_count < self.max_deliveries:
                delay = self.nak_delay * delivery_count
                self.failed += 1
                logger.warning(
                    "Message processing failed, will be redelivered",
                    extra={**log_extra, "operation": "nak", "nak_delay": delay},
                )
                await msg.nak(delay=delay)
            else:
                self.dead_lettered += 1
                await self.dead_letter(msg, event, error)
                await msg.term()
        except Exception as e:
            logger.error(
                "Failed to settle rejected message",
                extra={**log_extra, "operation": "reject", "settle_error": str(e)},
            )

    async def dead_letter(
        self, msg: Msg, event: LifecycleEvent, error: Exception
    ) -> None:
        """Record a message that exhausted its redelivery budget."""
        logger.error(
            "Message failed after maximum deliveries, terminating",
            extra={
                "operation": "dead_letter",
                "event_type": event.event_type,
                "product_id": event.product_id,
                "sku": event.sku,
                "correlation_id": event.correlation_id,
                "delivery_count": event.delivery_count,
                "error": str(error),
                "message_content": msg.data.decode("utf-8", errors="replace"),
            },
        )

        if not self.dead_letter_subject:
            return

        headers = {
            DEAD_LETTER_SUBJECT_HEADER: msg.subject,
            DEAD_LETTER_DELIVERIES_HEADER: str(event.delivery_count),
            DEAD_LETTER_ERROR_HEADER: str(error)[:512],
        }
        try:
            await self.connection.publish(self.dead_letter_subject, msg.data, headers)
        except Exception as e:
            logger.error(
                "Failed to forward message to dead-letter subject",
                extra={
                    "operation": "dead_letter",
                    "dead_letter_subject": self.dead_letter_subject,
                    "correlation_id": event.correlation_id,
                    "error": str(e),
                },
            )
            return

        self.sidecar.submit_published(
            event.model_copy(update={"subject": self.dead_letter_subject}),
            error=str(error),
        )

    @staticmethod
    def _unparsed_event(msg: Msg, delivery_count: int) -> LifecycleEvent:
        """Stand-in event so unparseable messages still reach the audit trail."""
        subject = msg.subject or "unknown"
        return LifecycleEvent(
            event_type=subject,
            correlation_id=synthesize_correlation_id(subject, None),
            payload={"raw": msg.data.decode("utf-8", errors="replace")},
            delivery_count=delivery_count,
            subject=msg.subject or "",
        )

    async def stop(self, grace_period: float = 30.0) -> None:
        """Stop pulling, let the batch in hand finish, then drain the connection."""
        self.running = False

        if self.task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self.task), timeout=grace_period)
            except asyncio.TimeoutError:
                logger.warning(
                    "Consumer loop did not finish within grace period, cancelling",
                    extra={"operation": "consumer_stop", "grace_period": grace_period},
                )
                self.task.cancel()
                try:
                    await self.task
                except asyncio.CancelledError:
                    pass
            self.task = None

        self.subscription = None
        await self.connection.close()
        logger.info(
            "Product lifecycle consumer stopped",
            extra={
                "operation": "consumer_stop",
                "processed": self.processed,
                "failed": self.failed,
                "dead_lettered": self.dead_lettered,
            },
        )

    async def health_check(self) -> Dict[str, Any]:
        timestamp = time.time()
        try:
            nats_health = self.connection.health_check()
            nats_health["subscription"] = self.subscription is not None

            handler_health: Dict[str, Any] = {}
            if isinstance(self.handler, HealthCheckable):
                handler_health = await self.handler.health_check()

            notifier_health = None
            if isinstance(self.sidecar.notifier, HealthCheckable):
                notifier_health = await self.sidecar.notifier.health_check()
        except Exception as e:
            return {
                "status": "error",
                "timestamp": timestamp,
                "service": "ProductLifecycleConsumer",
                "error": str(e),
            }

        if not (nats_health["connected"] and self.running):
            status = "unhealthy"
        elif handler_health.get("status", "healthy") != "healthy":
            status = handler_health.get("status", "degraded")
        else:
            status = "healthy"

        return {
            "status": status,
            "timestamp": timestamp,
            "service": "ProductLifecycleConsumer",
            "nats": nats_health,
            "processing": {
                "is_running": self.running,
                "processed": self.processed,
                "failed": self.failed,
                "dead_lettered": self.dead_lettered,
            },
            "product_cache_sync": handler_health,
            "audit": self.sidecar.health_check(),
            "notifications": notifier_health,
        }


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)
