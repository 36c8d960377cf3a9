"""
Pytest configuration and fixtures for product staging ingest tests.
"""

import os
from datetime import timedelta
from typing import Any, Dict
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio

# Set up test environment variables before importing anything else
os.environ.setdefault("APP_NAME", "Product Staging Ingest Test")
os.environ.setdefault("APP_VERSION", "1.0.0")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("SERVICE_NAME", "product-staging-ingest")
os.environ.setdefault("NATS_HOST", "localhost")
os.environ.setdefault("NATS_PORT", "4222")
os.environ.setdefault("STAGING_DATABASE_URL", "sqlite+aiosqlite:///./staging_test.db")
os.environ.setdefault("SYSTEM_API_URL", "http://system-api.test")
os.environ.setdefault("MAX_DELIVERIES", "3")

from product_staging_ingest.app.core.database import StagingDatabaseManager
from product_staging_ingest.app.events.schemas import LifecycleEvent
from product_staging_ingest.app.repository import StagingProductRepository


@pytest.fixture
def product_payload() -> Dict[str, Any]:
    """Product body as published by Product MDM."""
    return {
        "id": "prod-001",
        "sku": "SKU-001",
        "name": "Widget",
        "description": "A small widget",
        "longDescription": "A small widget for testing",
        "type": "Hardware",
        "status": "active",
        "slug": "widget",
        "avaTaxCode": "P0000000",
        "basePrice": "19.99",
        "costPrice": "7.50",
        "availableFlag": True,
        "webDisplayFlag": True,
        "licenseRequiredFlag": False,
        "seatBasedPricingFlag": False,
        "canBeFulfilledFlag": True,
        "contractItemFlag": False,
        "categorization": [{"category": "tools"}],
        "pricing": [{"tier": "list", "price": "19.99"}],
        "approvals": [],
        "createdAt": "2026-01-01T00:00:00Z",
        "updatedAt": "2026-01-02T00:00:00Z",
        "createdBy": "alice",
        "updatedBy": "bob",
    }


@pytest.fixture
def make_event(product_payload):
    """Build a LifecycleEvent from overrides on the sample payload."""

    def _make_event(
        event_type: str = "product.updated", delivery_count: int = 1, **overrides
    ) -> LifecycleEvent:
        payload = {**product_payload, **overrides}
        return LifecycleEvent.from_dict(
            {"eventType": event_type, **payload},
            subject=event_type,
            delivery_count=delivery_count,
        )

    return _make_event


@pytest_asyncio.fixture
async def database_manager(tmp_path):
    """SQLite-backed staging database, created fresh per test."""
    manager = StagingDatabaseManager(f"sqlite+aiosqlite:///{tmp_path}/staging.db")
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest_asyncio.fixture
async def repository(database_manager):
    return StagingProductRepository(
        database_manager.async_session_maker, staleness_threshold=timedelta(hours=24)
    )


def make_nats_msg(
    data: bytes,
    subject: str = "product.updated",
    num_delivered: int = 1,
    headers: Dict[str, str] | None = None,
) -> Mock:
    """Stand-in for a JetStream message with async settle methods."""
    msg = Mock()
    msg.data = data
    msg.subject = subject
    msg.headers = headers
    msg.metadata = Mock(num_delivered=num_delivered)
    msg.ack = AsyncMock()
    msg.nak = AsyncMock()
    msg.term = AsyncMock()
    return msg


@pytest.fixture
def nats_msg_factory():
    return make_nats_msg
