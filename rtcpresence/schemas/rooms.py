"""Frames exchanged over the channel WebSocket.

Inbound frames are a closed union: ``ChatMessage | PingMessage | UnknownMessage``.
Anything that is not a JSON object with a string ``type`` is malformed.
"""
import json
from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError


class SessionRole(str, Enum):
    HOST = "host"
    VIEWER = "viewer"


class PresenceEvent(str, Enum):
    VIEWER_JOIN = "viewer_join"
    VIEWER_LEAVE = "viewer_leave"


class ChatMessage(BaseModel):
    type: Literal["chat"]
    text: str


class PingMessage(BaseModel):
    type: Literal["ping"]


class UnknownMessage(BaseModel):
    type: str


IncomingMessage = Union[ChatMessage, PingMessage, UnknownMessage]


class MalformedMessage(ValueError):
    pass


def parse_incoming(raw: str) -> IncomingMessage:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(f"not JSON: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        raise MalformedMessage("frame must be an object with a string 'type'")

    msg_type = data["type"]
    try:
        if msg_type == "chat":
            return ChatMessage.model_validate(data)
        if msg_type == "ping":
            return PingMessage.model_validate(data)
    except PydanticValidationError as e:
        raise MalformedMessage(f"invalid {msg_type} frame: {e.error_count()} error(s)") from e
    return UnknownMessage(type=msg_type)


# Outbound frames

class ConnectedFrame(BaseModel):
    type: Literal["connected"] = "connected"
    sessionId: str
    viewerCount: int


class ViewerCountFrame(BaseModel):
    type: Literal["viewer_count"] = "viewer_count"
    count: int


class ChatFrame(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["chat"] = "chat"
    from_: str = Field(alias="from")
    role: str
    text: str
    timestamp: int


class PongFrame(BaseModel):
    type: Literal["pong"] = "pong"
