"""WebSocket 시그널링 종단 간 테스트 (FastAPI TestClient).

사용법:
    uv run pytest backend/test/test_signaling_ws.py
"""


def _connected(ws) -> str:
    message = ws.receive_json()
    assert message["type"] == "connected"
    return message["data"]["socketId"]


def test_two_participants_exchange_identities_and_leave(server):
    with server.websocket_connect("/ws") as alice, server.websocket_connect("/ws") as bob:
        alice_id = _connected(alice)
        bob_id = _connected(bob)
        assert alice_id != bob_id

        alice.send_json({"type": "join-room", "data": {"roomId": "4821"}})
        assert alice.receive_json() == {"type": "room-joined", "data": {"participants": []}}

        bob.send_json({"type": "join-room", "data": {"roomId": "4821"}})
        assert bob.receive_json() == {"type": "room-joined", "data": {"participants": [alice_id]}}
        assert alice.receive_json() == {"type": "participant-joined", "data": {"socketId": bob_id}}

        bob.send_json({"type": "offer", "data": {"target": alice_id, "sdp": {"type": "offer", "sdp": "v=0"}}})
        assert alice.receive_json() == {
            "type": "offer",
            "data": {"sender": bob_id, "sdp": {"type": "offer", "sdp": "v=0"}},
        }

        bob.send_json({"type": "leave-room", "data": {}})
        assert alice.receive_json() == {"type": "participant-left", "data": {"socketId": bob_id}}

    assert server.registry.get_room("4821").participant_count == 0


def test_disconnect_notifies_room(server):
    with server.websocket_connect("/ws") as alice:
        alice_id = _connected(alice)
        alice.send_json({"type": "join-room", "data": {"roomId": "5555"}})
        alice.receive_json()

        with server.websocket_connect("/ws") as bob:
            bob_id = _connected(bob)
            bob.send_json({"type": "join-room", "data": {"roomId": "5555"}})
            bob.receive_json()
            alice.receive_json()

        assert alice.receive_json() == {"type": "participant-left", "data": {"socketId": bob_id}}
        assert server.registry.participants("5555") == [alice_id]


def test_room_full_over_websocket(server):
    sockets = [server.websocket_connect("/ws") for _ in range(5)]
    entered = [ws.__enter__() for ws in sockets]
    try:
        for ws in entered:
            _connected(ws)
        for ws in entered[:4]:
            ws.send_json({"type": "join-room", "data": {"roomId": "7777"}})
            assert ws.receive_json()["type"] == "room-joined"

        entered[4].send_json({"type": "join-room", "data": {"roomId": "7777"}})
        assert entered[4].receive_json() == {"type": "room-full", "data": {}}
        assert server.registry.get_room("7777").is_full is True
    finally:
        for ws in reversed(sockets):
            ws.__exit__(None, None, None)


def test_malformed_json_keeps_connection_open(server):
    with server.websocket_connect("/ws") as ws:
        _connected(ws)
        ws.send_text("{not json")
        assert ws.receive_json() == {"type": "error", "data": {"message": "Malformed signaling message"}}

        ws.send_json({"type": "join-room", "data": {"roomId": "1234"}})
        assert ws.receive_json()["type"] == "room-joined"
