import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect


def test_ws_ping_pong(client: TestClient):
    with client.websocket_connect('/ws/ws-ping?name=Ann') as ws:
        connected = ws.receive_json()
        assert connected['type'] == 'connected'
        assert connected['viewerCount'] == 1
        assert ws.receive_json() == {'type': 'viewer_count', 'count': 1}

        ws.send_json({'type': 'ping'})
        assert ws.receive_json() == {'type': 'pong'}


def test_ws_chat_reaches_everyone(client: TestClient):
    with client.websocket_connect('/ws/ws-chat?role=host&name=Bo') as host:
        assert host.receive_json()['viewerCount'] == 0
        assert host.receive_json()['count'] == 0

        with client.websocket_connect('/ws/ws-chat') as viewer:
            viewer.receive_json()
            viewer.receive_json()
            assert host.receive_json() == {'type': 'viewer_count', 'count': 1}

            # unknown and malformed frames are ignored without closing the socket
            viewer.send_text('{"type": "reaction"}')
            viewer.send_text('not json')
            viewer.send_json({'type': 'chat', 'text': 'hello'})

            for ws in (host, viewer):
                chat = ws.receive_json()
                assert chat['type'] == 'chat'
                assert chat['from'] == 'Anonymous'
                assert chat['role'] == 'viewer'
                assert chat['text'] == 'hello'

        # viewer closed
        assert host.receive_json() == {'type': 'viewer_count', 'count': 0}


def test_ws_receives_heartbeat_joins(client: TestClient):
    with client.websocket_connect('/ws/ws-hb?role=host') as host:
        host.receive_json()
        host.receive_json()

        client.get('/heartbeat', params={'channel': 'ws-hb', 'viewerId': 'v1'})
        assert host.receive_json() == {'type': 'viewer_count', 'count': 1}

        client.get('/leave', params={'channel': 'ws-hb', 'viewerId': 'v1'})
        assert host.receive_json() == {'type': 'viewer_count', 'count': 0}


def test_ws_and_heartbeat_viewer_double_count(client: TestClient):
    client.get('/heartbeat', params={'channel': 'ws-dup', 'viewerId': 'ann'})
    with client.websocket_connect('/ws/ws-dup?name=ann') as ws:
        assert ws.receive_json()['viewerCount'] == 2
        assert client.get('/viewers', params={'channel': 'ws-dup'}).json()['viewerCount'] == 2


def test_ws_rejects_unknown_role(client: TestClient):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect('/ws/ws-bad?role=admin') as ws:
            ws.receive_json()
