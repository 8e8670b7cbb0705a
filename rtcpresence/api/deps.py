from starlette.requests import HTTPConnection

from rtcpresence.services.presence import ViewerPresence
from rtcpresence.services.rooms import RoomRegistry


# HTTPConnection covers both Request and WebSocket
def get_rooms(conn: HTTPConnection) -> RoomRegistry:
    return conn.app.state.rooms


def get_presence(conn: HTTPConnection) -> ViewerPresence:
    return conn.app.state.presence
