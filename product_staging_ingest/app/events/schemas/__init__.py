"""
Product Staging Event Schemas
=============================

Imports all schemas from event_schemas.py for clean module structure.
"""

from .event_schemas import (
    CUSTOMER_VISIBLE_ACTIONS,
    MSG_ID_HEADER,
    PRODUCT_ACTIVATED,
    PRODUCT_CREATED,
    PRODUCT_DEACTIVATED,
    PRODUCT_DELETED,
    PRODUCT_LAUNCHED,
    PRODUCT_UPDATED,
    LifecycleEvent,
    synthesize_correlation_id,
)

__all__ = [
    "LifecycleEvent",
    "synthesize_correlation_id",
    "PRODUCT_CREATED",
    "PRODUCT_UPDATED",
    "PRODUCT_LAUNCHED",
    "PRODUCT_ACTIVATED",
    "PRODUCT_DEACTIVATED",
    "PRODUCT_DELETED",
    "CUSTOMER_VISIBLE_ACTIONS",
    "MSG_ID_HEADER",
]
