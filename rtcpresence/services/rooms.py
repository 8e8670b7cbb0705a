import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Set

from rtcpresence.core.errors import UpstreamUnavailable, ValidationError
from rtcpresence.schemas.rooms import (
    ChatFrame,
    ChatMessage,
    ConnectedFrame,
    MalformedMessage,
    PingMessage,
    PongFrame,
    PresenceEvent,
    SessionRole,
    ViewerCountFrame,
    parse_incoming,
)

logger = logging.getLogger(__name__)

ANONYMOUS = "Anonymous"

# upper bound for one socket write; a stalled client must not hold the room lock
SEND_TIMEOUT_SECONDS = 5.0


class Connection(Protocol):
    async def send_text(self, data: str) -> None: ...


@dataclass
class Session:
    connection: Connection
    role: SessionRole
    name: Optional[str] = None


def _now_ms() -> int:
    return int(time.time() * 1000)


class ChannelRoom:
    """Live state of one channel.

    Holds the WebSocket sessions and the out-of-band viewer ids reported via
    :meth:`notify`. ``count()`` is viewer-role sessions plus out-of-band
    viewers. A viewer that holds a socket and still has a heartbeat record is
    counted twice until the record expires: sessions and viewer ids are never
    correlated.

    Every mutating operation runs under the room lock, so one room behaves as
    a single-threaded actor. Fan-out happens concurrently and each write is
    bounded by ``send_timeout``; a slow socket is skipped, not waited on.
    """

    def __init__(self, channel: str, clock_ms: Callable[[], int] = _now_ms,
                 send_timeout: float = SEND_TIMEOUT_SECONDS):
        self.channel = channel
        self.send_timeout = send_timeout
        self.sessions: Dict[str, Session] = {}
        self.viewers: Set[str] = set()
        self._clock_ms = clock_ms
        self._lock = asyncio.Lock()

    def count(self) -> int:
        ws_viewers = sum(1 for s in self.sessions.values() if s.role == SessionRole.VIEWER)
        return ws_viewers + len(self.viewers)

    async def upgrade(self, connection: Connection, role: SessionRole = SessionRole.VIEWER,
                      name: Optional[str] = None) -> str:
        async with self._lock:
            role = SessionRole(role)
            session_id = uuid.uuid4().hex
            self.sessions[session_id] = Session(connection=connection, role=role, name=name)
            logger.info("Session %s joined %s as %s", session_id, self.channel, role.value)

            await self._send(session_id, ConnectedFrame(sessionId=session_id, viewerCount=self.count()))
            await self._broadcast_count()
            return session_id

    async def on_message(self, session_id: str, raw: str) -> None:
        async with self._lock:
            session = self.sessions.get(session_id)
            if session is None:
                return
            try:
                message = parse_incoming(raw)
            except MalformedMessage as e:
                logger.warning("Dropping malformed frame from %s: %s", session_id, e)
                return

            if isinstance(message, ChatMessage):
                await self._broadcast(ChatFrame(
                    from_=session.name or ANONYMOUS,
                    role=session.role.value,
                    text=message.text,
                    timestamp=self._clock_ms(),
                ))
            elif isinstance(message, PingMessage):
                await self._send(session_id, PongFrame())
            else:
                logger.info("Ignoring unknown message type %r in %s", message.type, self.channel)

    async def on_close(self, session_id: str) -> None:
        async with self._lock:
            if self.sessions.pop(session_id, None) is None:
                return
            logger.info("Session %s left %s", session_id, self.channel)
            await self._broadcast_count()

    async def on_error(self, session_id: str) -> None:
        async with self._lock:
            if self.sessions.pop(session_id, None) is not None:
                logger.info("Session %s dropped from %s after a socket error", session_id, self.channel)

    async def notify(self, event: PresenceEvent, viewer_id: str) -> None:
        if not viewer_id:
            raise ValidationError("viewerId is required")
        try:
            event = PresenceEvent(event)
        except ValueError:
            raise ValidationError(f"unknown presence event {event!r}") from None

        async with self._lock:
            if event == PresenceEvent.VIEWER_JOIN:
                self.viewers.add(viewer_id)
            else:
                self.viewers.discard(viewer_id)
            await self._broadcast_count()

    async def _broadcast_count(self) -> None:
        await self._broadcast(ViewerCountFrame(count=self.count()))

    async def _broadcast(self, frame) -> None:
        payload = _dumps(frame)
        recipients = list(self.sessions.items())
        await asyncio.gather(*(self._deliver(sid, s.connection, payload) for sid, s in recipients))

    async def _send(self, session_id: str, frame) -> None:
        session = self.sessions.get(session_id)
        if session is None:
            return
        await self._deliver(session_id, session.connection, _dumps(frame))

    async def _deliver(self, session_id: str, connection: Connection, payload: str) -> None:
        try:
            await asyncio.wait_for(connection.send_text(payload), self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning("Send to %s in %s timed out after %ss", session_id, self.channel, self.send_timeout)
        except Exception:
            # the socket's own close/error event removes the session
            logger.debug("Send to %s failed", session_id, exc_info=True)


def _dumps(frame: Any) -> str:
    return json.dumps(frame.model_dump(by_alias=True))


class RoomRegistry:
    """Channel name -> ChannelRoom, created on first reference.

    Rooms are never torn down individually; the registry drops all of them
    on :meth:`close`, after which lookups raise :class:`UpstreamUnavailable`.
    """

    def __init__(self, room_factory: Callable[[str], ChannelRoom] = ChannelRoom):
        self._rooms: Dict[str, ChannelRoom] = {}
        self._factory = room_factory
        self._closed = False

    def get(self, channel: str) -> ChannelRoom:
        if self._closed:
            raise UpstreamUnavailable("channel rooms are not available")
        if not channel:
            raise ValidationError("channel is required")
        room = self._rooms.get(channel)
        if room is None:
            room = self._rooms[channel] = self._factory(channel)
        return room

    def __contains__(self, channel: str) -> bool:
        return channel in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)

    async def count(self, channel: str) -> int:
        return self.get(channel).count()

    async def notify(self, channel: str, event: PresenceEvent, viewer_id: str) -> None:
        await self.get(channel).notify(event, viewer_id)

    def close(self) -> None:
        self._closed = True
        self._rooms.clear()


async def notify_room(rooms: RoomRegistry, channel: str, event: PresenceEvent, viewer_id: str) -> None:
    """Best-effort room update; the presence store stays the fallback source."""
    try:
        await rooms.notify(channel, event, viewer_id)
    except UpstreamUnavailable as e:
        logger.warning("Could not notify room %s of %s: %s", channel, event.value, e.message)


async def viewer_count(rooms: RoomRegistry, presence, channel: str) -> int:
    """Ask the room first, fall back to counting live presence records."""
    try:
        return await rooms.count(channel)
    except UpstreamUnavailable:
        logger.info("Room %s unavailable; counting presence records instead", channel)
        return await presence.count(channel)
