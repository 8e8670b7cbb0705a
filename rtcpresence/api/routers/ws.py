import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from rtcpresence.api.deps import get_rooms
from rtcpresence.core.errors import UpstreamUnavailable
from rtcpresence.schemas.rooms import SessionRole
from rtcpresence.services.rooms import ANONYMOUS, RoomRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws/{channel}")
async def channel_ws(ws: WebSocket, channel: str, rooms: RoomRegistry = Depends(get_rooms)):
    """Realtime connection to one channel room.

    Query params (read from ws.query_params):
    - role: host | viewer (default viewer)
    - name: display name (default Anonymous)
    """
    try:
        role = SessionRole(ws.query_params.get("role") or SessionRole.VIEWER.value)
    except ValueError:
        await ws.close(code=1008)
        return
    name = ws.query_params.get("name") or ANONYMOUS

    try:
        room = rooms.get(channel)
    except UpstreamUnavailable:
        await ws.close(code=1011)
        return

    await ws.accept()
    session_id = await room.upgrade(ws, role, name)

    try:
        while True:
            msg = await ws.receive()
            if msg.get("type") == "websocket.disconnect":
                break
            text_msg = msg.get("text")
            if text_msg is None:
                # binary frames are not part of the protocol
                continue
            await room.on_message(session_id, text_msg)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WebSocket error in %s", channel)
        await room.on_error(session_id)
        return

    await room.on_close(session_id)
