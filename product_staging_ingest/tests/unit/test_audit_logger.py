"""
Unit tests for CentralMessageLogger and AuditSidecar
"""

import asyncio
import json
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from product_staging_ingest.app.schemas.notification import ProductNotification
from product_staging_ingest.app.services.audit_logger import CentralMessageLogger
from product_staging_ingest.app.services.audit_sidecar import AuditSidecar


def logger_with(handler) -> CentralMessageLogger:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CentralMessageLogger("http://system-api.test/", client=client)


class TestCentralMessageLogger:
    @pytest.mark.asyncio
    async def test_log_consumed_posts_record(self, make_event):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(201, json={"id": 1})

        message_logger = logger_with(handler)
        event = make_event("product.updated", delivery_count=3)

        assert await message_logger.log_consumed(event, processing_time_ms=12.5) is True

        assert len(requests) == 1
        assert str(requests[0].url) == "http://system-api.test/messages"
        body = json.loads(requests[0].content)
        assert body["messageType"] == "consumed"
        assert body["sourceSystem"] == "product-staging"
        assert body["eventType"] == "product.updated"
        assert body["productId"] == "prod-001"
        assert body["productSku"] == "SKU-001"
        assert body["processingTimeMs"] == 12.5
        assert body["retryCount"] == 2
        assert body["messagePayload"]["action"] == "updated"
        assert body["messagePayload"]["productData"]["name"] == "Widget"
        await message_logger.close()

    @pytest.mark.asyncio
    async def test_log_published_carries_error(self, make_event):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200)

        message_logger = logger_with(handler)

        await message_logger.log_published(make_event(), error="max deliveries")

        assert bodies[0]["messageType"] == "published"
        assert bodies[0]["errorMessage"] == "max deliveries"

    @pytest.mark.asyncio
    async def test_rejected_record_returns_false(self, make_event):
        message_logger = logger_with(lambda request: httpx.Response(500, text="boom"))

        assert await message_logger.log_consumed(make_event()) is False

    @pytest.mark.asyncio
    async def test_transport_error_returns_false(self, make_event):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        message_logger = logger_with(handler)

        assert await message_logger.log_consumed(make_event()) is False

    @pytest.mark.asyncio
    async def test_correlation_id_override(self, make_event):
        message_logger = logger_with(lambda request: httpx.Response(200))

        record = message_logger.build_record(
            "consumed", make_event(), correlation_id="corr-123"
        )

        assert record.correlation_id == "corr-123"

    @pytest.mark.asyncio
    async def test_is_healthy(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/health"
            return httpx.Response(200)

        assert await logger_with(handler).is_healthy() is True
        assert (
            await logger_with(lambda request: httpx.Response(503)).is_healthy() is False
        )


class TestAuditSidecar:
    @pytest.mark.asyncio
    async def test_jobs_run_in_background(self, make_event):
        message_logger = Mock(log_consumed=AsyncMock(return_value=True))
        notifier = Mock(notify=AsyncMock())
        sidecar = AuditSidecar(message_logger, notifier)
        sidecar.start()
        event = make_event()

        assert sidecar.submit_consumed(event, 5.0) is True
        assert sidecar.submit_notification(ProductNotification.from_event(event)) is True
        await sidecar.close()

        message_logger.log_consumed.assert_awaited_once_with(
            event, processing_time_ms=5.0, error=None
        )
        notifier.notify.assert_awaited_once()
        assert sidecar.running is False

    @pytest.mark.asyncio
    async def test_failing_job_does_not_stop_worker(self, make_event):
        message_logger = Mock(
            log_consumed=AsyncMock(side_effect=[RuntimeError("audit down"), True])
        )
        sidecar = AuditSidecar(message_logger)
        sidecar.start()

        sidecar.submit_consumed(make_event())
        sidecar.submit_consumed(make_event())
        await asyncio.wait_for(sidecar.queue.join(), timeout=1.0)

        assert message_logger.log_consumed.await_count == 2
        assert sidecar.failures == 1
        assert sidecar.last_error == "audit down"
        assert sidecar.running is True
        await sidecar.close()

    def test_full_queue_drops_jobs(self, make_event):
        sidecar = AuditSidecar(Mock(), max_queue_size=1)

        assert sidecar.submit_consumed(make_event()) is True
        assert sidecar.submit_published(make_event()) is False
        assert sidecar.dropped == 1
        assert sidecar.health_check()["status"] == "stopped"

    @pytest.mark.asyncio
    async def test_close_gives_up_after_timeout(self, make_event):
        async def slow_log(*args, **kwargs):
            await asyncio.sleep(10)

        sidecar = AuditSidecar(Mock(log_consumed=slow_log))
        sidecar.start()
        sidecar.submit_consumed(make_event())

        await sidecar.close(timeout=0.05)

        assert sidecar.worker is None

    @pytest.mark.asyncio
    async def test_close_without_start(self):
        sidecar = AuditSidecar(Mock())

        await sidecar.close()

        assert sidecar.worker is None
