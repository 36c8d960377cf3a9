from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from ...services.notifications import Notifier, RoomNotifier
from ...utils.logging import get_logger
from ..dependencies import NotifierDep

logger = get_logger("product_staging_ingest.api.notifications")

router = APIRouter()


@router.websocket("/ws/{room}")
async def notification_socket(
    websocket: WebSocket, room: str, notifier: Notifier = NotifierDep
) -> None:
    """Join a notification room and receive product-launched / product-updated messages."""
    if not isinstance(notifier, RoomNotifier) or room not in notifier.rooms:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await notifier.connect(room, websocket)
    try:
        # Clients only listen; inbound frames are read to detect disconnects
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        notifier.disconnect(room, websocket)
