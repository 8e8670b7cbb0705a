from typing import Optional

from fastapi import APIRouter, Depends, Query

from rtcpresence.api.deps import get_presence, get_rooms
from rtcpresence.core.errors import ValidationError
from rtcpresence.schemas.presence import SuccessResponse, ViewerCountResponse
from rtcpresence.schemas.rooms import PresenceEvent
from rtcpresence.services.presence import ViewerPresence
from rtcpresence.services.rooms import RoomRegistry, notify_room, viewer_count

router = APIRouter()


def _require(channel: Optional[str], viewer_id: Optional[str]):
    if not channel or not viewer_id:
        raise ValidationError("Missing channel or viewerId parameter")
    return channel, viewer_id


@router.api_route("/heartbeat", methods=["GET", "POST"], response_model=SuccessResponse)
async def heartbeat(
    channel: Optional[str] = Query(None),
    viewerId: Optional[str] = Query(None),
    presence: ViewerPresence = Depends(get_presence),
    rooms: RoomRegistry = Depends(get_rooms),
):
    channel, viewer_id = _require(channel, viewerId)
    created = await presence.heartbeat(channel, viewer_id)
    if created:
        # first heartbeat, or the previous record already expired
        await notify_room(rooms, channel, PresenceEvent.VIEWER_JOIN, viewer_id)
    return SuccessResponse()


@router.api_route("/leave", methods=["GET", "POST"], response_model=SuccessResponse)
async def leave(
    channel: Optional[str] = Query(None),
    viewerId: Optional[str] = Query(None),
    presence: ViewerPresence = Depends(get_presence),
    rooms: RoomRegistry = Depends(get_rooms),
):
    channel, viewer_id = _require(channel, viewerId)
    await presence.leave(channel, viewer_id)
    await notify_room(rooms, channel, PresenceEvent.VIEWER_LEAVE, viewer_id)
    return SuccessResponse()


@router.get("/viewers", response_model=ViewerCountResponse)
async def viewers(
    channel: Optional[str] = Query(None),
    presence: ViewerPresence = Depends(get_presence),
    rooms: RoomRegistry = Depends(get_rooms),
):
    if not channel:
        raise ValidationError("Missing channel parameter")
    return ViewerCountResponse(channel=channel, viewerCount=await viewer_count(rooms, presence, channel))
