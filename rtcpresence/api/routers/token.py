import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from rtcpresence.api.deps import get_presence, get_rooms
from rtcpresence.api.limiter import limiter
from rtcpresence.core.config import Settings, get_settings, settings as app_settings
from rtcpresence.core.errors import ConfigurationError, ValidationError
from rtcpresence.schemas.rooms import PresenceEvent
from rtcpresence.schemas.token import TokenResponse
from rtcpresence.services.agora_token import ROLE_PUBLISHER, ROLE_SUBSCRIBER, build_rtc_token
from rtcpresence.services.presence import ViewerPresence
from rtcpresence.services.rooms import RoomRegistry, notify_room

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=TokenResponse)
@router.get("/token", response_model=TokenResponse)
@limiter.limit(app_settings.TOKEN_RATE_LIMIT)
async def rtc_token(
    request: Request,
    channel: Optional[str] = Query(None),
    role: str = Query(ROLE_SUBSCRIBER),
    uid: str = Query("0"),
    viewerId: Optional[str] = Query(None),
    settings: Settings = Depends(get_settings),
    presence: ViewerPresence = Depends(get_presence),
    rooms: RoomRegistry = Depends(get_rooms),
):
    """Issue an RTC token for `channel`.

    Subscribers passing `viewerId` are registered as heartbeat viewers right away.
    """
    if not settings.AGORA_APP_ID or not settings.AGORA_APP_CERT:
        raise ConfigurationError("Server misconfigured: missing AGORA_APP_ID or AGORA_APP_CERTIFICATE")
    if not channel:
        raise ValidationError("Missing channel parameter")
    if role not in (ROLE_PUBLISHER, ROLE_SUBSCRIBER):
        raise ValidationError("role must be 'publisher' or 'subscriber'")
    if not (uid.isascii() and uid.isdigit()):
        raise ValidationError("uid must be a non-negative integer")
    uid_int = int(uid)

    token = build_rtc_token(
        settings.AGORA_APP_ID,
        settings.AGORA_APP_CERT,
        channel,
        uid_int,
        role,
        issued_at=int(time.time()),
        expire_seconds=settings.AGORA_TOKEN_EXPIRE,
    )

    if role == ROLE_SUBSCRIBER and viewerId:
        try:
            await presence.register(channel, viewerId)
        except Exception:
            logger.exception("Failed to register viewer %s in %s", viewerId, channel)
        else:
            await notify_room(rooms, channel, PresenceEvent.VIEWER_JOIN, viewerId)

    return TokenResponse(token=token, appId=settings.AGORA_APP_ID, channel=channel, uid=uid_int)
