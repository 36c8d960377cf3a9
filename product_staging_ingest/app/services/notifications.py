"""
Real-time product notifications for downstream UIs.

Clients join a room over ``/ws/{room}``; each synced event is sent to every
configured room at most once. Sockets that fail on send are dropped.
"""

from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Set

from fastapi import WebSocket

from ..events.base import HealthCheckable
from ..events.schemas import CUSTOMER_VISIBLE_ACTIONS
from ..schemas.notification import ProductNotification
from ..utils.logging import get_logger

logger = get_logger("product_staging_ingest.notifications")

PRODUCT_LAUNCHED_EVENT = "product-launched"
PRODUCT_UPDATED_EVENT = "product-updated"


class Notifier(ABC):
    """Sends product notifications to interested consumers"""

    @abstractmethod
    async def notify(self, notification: ProductNotification) -> None:
        pass


class NullNotifier(Notifier):
    """Used when no real-time channel is wired in"""

    async def notify(self, notification: ProductNotification) -> None:
        logger.debug(
            "No notification channel configured",
            extra={"operation": "notify", "event_type": notification.event_type},
        )


class RoomNotifier(Notifier, HealthCheckable):
    """Fans notifications out to WebSocket rooms"""

    def __init__(self, rooms: Iterable[str]):
        self.rooms: List[str] = list(rooms)
        self.connections: Dict[str, Set[WebSocket]] = defaultdict(set)
        self.sent = 0

    async def connect(self, room: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections[room].add(websocket)
        logger.info(
            "Client joined notification room",
            extra={"operation": "ws_connect", "room": room},
        )

    def disconnect(self, room: str, websocket: WebSocket) -> None:
        self.connections[room].discard(websocket)
        logger.info(
            "Client left notification room",
            extra={"operation": "ws_disconnect", "room": room},
        )

    @staticmethod
    def event_names(notification: ProductNotification) -> List[str]:
        action = notification.event_type.rsplit(".", 1)[-1].lower()
        names = []
        if action in CUSTOMER_VISIBLE_ACTIONS:
            names.append(PRODUCT_LAUNCHED_EVENT)
        names.append(PRODUCT_UPDATED_EVENT)
        return names

    async def notify(self, notification: ProductNotification) -> None:
        for event_name in self.event_names(notification):
            message = notification.to_message(event_name)
            for room in self.rooms:
                await self._broadcast(room, message)

        logger.info(
            "Emitted product notification",
            extra={
                "operation": "notify",
                "event_type": notification.event_type,
                "product_id": notification.product_id,
                "sku": notification.sku,
            },
        )

    async def _broadcast(self, room: str, message: Dict[str, Any]) -> None:
        for websocket in list(self.connections.get(room, ())):
            try:
                await websocket.send_json(message)
                self.sent += 1
            except Exception as e:
                logger.warning(
                    "Dropping unreachable notification client",
                    extra={"operation": "ws_send", "room": room, "error": str(e)},
                )
                self.connections[room].discard(websocket)

    async def health_check(self) -> Dict[str, Any]:
        return {
            "status": "healthy",
            "rooms": {room: len(self.connections.get(room, ())) for room in self.rooms},
            "sent": self.sent,
        }
