"""
NATS JetStream connection and topology for the product lifecycle stream.

The stream and the durable consumer are looked up first and only created
when missing. If the durable cannot be created, an existing durable on the
stream that covers the lifecycle subjects is reused instead.
"""

import asyncio
from typing import Any, Dict, List, Optional

from nats.aio.client import Client as NATS
from nats.js import JetStreamContext
from nats.js.api import (
    AckPolicy,
    ConsumerConfig,
    ConsumerInfo,
    DeliverPolicy,
    ReplayPolicy,
    RetentionPolicy,
    StorageType,
    StreamConfig,
)
from nats.js.errors import NotFoundError

from ...core.exceptions import TopologyError
from ...utils.logging import get_logger

logger = get_logger("product_staging_ingest.events.nats")

STREAM_MAX_AGE_SECONDS = 24 * 60 * 60
STREAM_MAX_MSGS = 10_000
STREAM_DUPLICATE_WINDOW_SECONDS = 5 * 60


class JetStreamConnection:
    """Owns the NATS connection, the JetStream context and the durable binding"""

    def __init__(
        self,
        servers: List[str],
        stream_name: str,
        stream_subjects: List[str],
        consumer_name: str,
        client_name: str = "product-staging-ingest",
        max_deliveries: int = 3,
        ack_wait: float = 30.0,
        connect_timeout: float = 10.0,
        reconnect_time_wait: float = 2.0,
        initial_connect_timeout: float = 30.0,
    ):
        self.servers = servers
        self.stream_name = stream_name
        self.stream_subjects = stream_subjects
        self.consumer_name = consumer_name
        self.client_name = client_name
        self.max_deliveries = max_deliveries
        self.ack_wait = ack_wait
        self.connect_timeout = connect_timeout
        self.reconnect_time_wait = reconnect_time_wait
        self.initial_connect_timeout = initial_connect_timeout

        self.nc: Optional[NATS] = None
        self.js: Optional[JetStreamContext] = None
        # Name of the durable actually bound, which may be a discovered one
        self.bound_consumer: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self.nc is not None and self.nc.is_connected

    async def connect(self) -> JetStreamContext:
        """Connect, then ensure stream and durable.

        With unbounded reconnects nats-py also retries the first connect
        forever, so that attempt is capped by ``initial_connect_timeout`` and
        raises TopologyError. Reconnects after that stay unbounded.
        """
        logger.info(
            "Connecting to NATS",
            extra={"operation": "nats_connect", "servers": self.servers},
        )
        nc = NATS()
        try:
            await asyncio.wait_for(
                nc.connect(
                    servers=self.servers,
                    name=self.client_name,
                    connect_timeout=self.connect_timeout,
                    allow_reconnect=True,
                    max_reconnect_attempts=-1,
                    reconnect_time_wait=self.reconnect_time_wait,
                    error_cb=self._on_error,
                    disconnected_cb=self._on_disconnected,
                    reconnected_cb=self._on_reconnected,
                    closed_cb=self._on_closed,
                ),
                timeout=self.initial_connect_timeout,
            )
        except Exception as e:
            await self._discard(nc)
            raise TopologyError(
                f"Could not connect to NATS within {self.initial_connect_timeout:g}s: {e!r}",
                details={"servers": self.servers},
            ) from e
        self.nc = nc
        self.js = self.nc.jetstream()

        await self.ensure_stream()
        self.bound_consumer = await self.ensure_consumer()

        logger.info(
            "Connected to NATS JetStream",
            extra={
                "operation": "nats_connect",
                "stream": self.stream_name,
                "consumer": self.bound_consumer,
            },
        )
        return self.js

    async def ensure_stream(self) -> None:
        try:
            await self.js.stream_info(self.stream_name)
            logger.info(
                "Using existing NATS stream",
                extra={"operation": "ensure_stream", "stream": self.stream_name},
            )
            return
        except NotFoundError:
            pass

        logger.info(
            "Creating NATS stream",
            extra={
                "operation": "ensure_stream",
                "stream": self.stream_name,
                "subjects": self.stream_subjects,
            },
        )
        try:
            await self.js.add_stream(
                StreamConfig(
                    name=self.stream_name,
                    subjects=self.stream_subjects,
                    storage=StorageType.FILE,
                    retention=RetentionPolicy.WORK_QUEUE,
                    max_age=STREAM_MAX_AGE_SECONDS,
                    max_msgs=STREAM_MAX_MSGS,
                    duplicate_window=STREAM_DUPLICATE_WINDOW_SECONDS,
                )
            )
        except Exception as e:
            raise TopologyError(
                f"Could not create stream {self.stream_name}: {e}",
                details={"stream": self.stream_name},
            ) from e

    def consumer_config(self) -> ConsumerConfig:
        return ConsumerConfig(
            durable_name=self.consumer_name,
            deliver_policy=DeliverPolicy.ALL,
            ack_policy=AckPolicy.EXPLICIT,
            ack_wait=self.ack_wait,
            max_deliver=self.max_deliveries,
            replay_policy=ReplayPolicy.INSTANT,
            filter_subject=self.stream_subjects[0],
        )

    async def ensure_consumer(self) -> str:
        """Return the name of the durable consumer to pull from."""
        try:
            info = await self.js.consumer_info(self.stream_name, self.consumer_name)
            logger.info(
                "Using existing durable consumer",
                extra={
                    "operation": "ensure_consumer",
                    "consumer": self.consumer_name,
                    "filter_subject": info.config.filter_subject,
                },
            )
            return self.consumer_name
        except NotFoundError:
            pass

        try:
            await self.js.add_consumer(self.stream_name, config=self.consumer_config())
            logger.info(
                "Created durable consumer",
                extra={"operation": "ensure_consumer", "consumer": self.consumer_name},
            )
            return self.consumer_name
        except Exception as e:
            logger.warning(
                "Failed to create durable consumer, checking existing consumers",
                extra={
                    "operation": "ensure_consumer",
                    "consumer": self.consumer_name,
                    "error": str(e),
                },
            )

        existing = await self.js.consumers_info(self.stream_name)
        fallback = self.pick_fallback_consumer(existing)
        if fallback is None:
            raise TopologyError(
                "No usable durable consumer found and creating one failed",
                details={"stream": self.stream_name, "consumer": self.consumer_name},
            )

        logger.info(
            "Reusing existing durable consumer",
            extra={"operation": "ensure_consumer", "consumer": fallback},
        )
        return fallback

    def pick_fallback_consumer(self, consumers: List[ConsumerInfo]) -> Optional[str]:
        """First durable whose filter covers the lifecycle subjects."""
        for info in consumers:
            config = info.config
            if not config or not config.durable_name:
                continue
            if config.filter_subject in (None, "", *self.stream_subjects):
                return info.name
        return None

    async def pull_subscribe(self) -> JetStreamContext.PullSubscription:
        if self.js is None or self.bound_consumer is None:
            raise TopologyError("JetStream is not connected")
        return await self.js.pull_subscribe_bind(self.bound_consumer, self.stream_name)

    async def publish(
        self, subject: str, payload: bytes, headers: Optional[Dict[str, str]] = None
    ) -> None:
        """Plain NATS publish, outside the lifecycle stream."""
        await self.nc.publish(subject, payload, headers=headers)

    async def close(self) -> None:
        """Drain in-flight traffic, then close the connection."""
        if self.nc is None:
            return
        try:
            if self.nc.is_connected:
                await asyncio.wait_for(self.nc.drain(), timeout=self.connect_timeout)
        except Exception as e:
            logger.warning(
                "Error draining NATS connection",
                extra={"operation": "nats_close", "error": str(e)},
            )
        finally:
            if not self.nc.is_closed:
                await self.nc.close()
            self.nc = None
            self.js = None
            logger.info("NATS connection closed", extra={"operation": "nats_close"})

    async def _discard(self, nc: NATS) -> None:
        """Stop a client whose first connect never completed."""
        try:
            await nc.close()
        except Exception as e:
            logger.warning(
                "Error closing unconnected NATS client",
                extra={"operation": "nats_connect", "error": str(e)},
            )

    def health_check(self) -> Dict[str, Any]:
        return {
            "connected": self.is_connected,
            "jetstream": self.js is not None,
            "stream": self.stream_name,
            "consumer": self.bound_consumer,
        }

    async def _on_error(self, e: Exception) -> None:
        logger.error(
            "NATS connection error", extra={"operation": "nats_error", "error": str(e)}
        )

    async def _on_disconnected(self) -> None:
        logger.warning("NATS disconnected", extra={"operation": "nats_disconnected"})

    async def _on_reconnected(self) -> None:
        logger.info(
            "NATS reconnected",
            extra={
                "operation": "nats_reconnected",
                "server": str(self.nc.connected_url) if self.nc else None,
            },
        )

    async def _on_closed(self) -> None:
        logger.info("NATS connection closed by client", extra={"operation": "nats_closed"})
