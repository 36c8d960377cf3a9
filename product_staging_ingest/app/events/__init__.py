"""
Events module for Product Staging Ingest.

Consumes product lifecycle events from NATS JetStream and applies them to
the staging cache.

Consumer:
    - ProductLifecycleConsumer (events.event_consumers): pull loop over the
      durable consumer with ack / nak / term handling and dead-lettering

Connection:
    - JetStreamConnection (events.base.nats_client): connection, stream and
      durable consumer topology

Event Types Supported:
    product.created, product.updated, product.launched, product.activated,
    product.deactivated, product.deleted
"""

from .schemas import LifecycleEvent

__all__ = ["LifecycleEvent"]
