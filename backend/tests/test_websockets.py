import asyncio
import logging
from types import SimpleNamespace

from fastapi import WebSocketDisconnect
from sqlmodel import Session

from database.connection import engine
from routers.websockets import ws_calls
from services.call_service import CallService
from services.websocket_manager import BroadcastManager


class FakeSocket:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.accepted = False
        self.closed = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(message)

    async def close(self):
        self.closed = True


def test_broadcast_reaches_only_room_members() -> None:
    async def scenario():
        manager = BroadcastManager()
        a, b, c = FakeSocket(), FakeSocket(), FakeSocket()
        for ws in (a, b, c):
            await manager.connect(ws)
        await manager.join(a, "call_1")
        await manager.join(b, "call_1")
        await manager.join(c, "call_2")

        await manager.broadcast("call_1", "call-started", {"callId": "call_1"})
        return a, b, c

    a, b, c = asyncio.run(scenario())
    expected = {"type": "call-started", "callId": "call_1", "data": {"callId": "call_1"}}
    assert a.accepted and b.accepted and c.accepted
    assert a.sent == [expected]
    assert b.sent == [expected]
    assert c.sent == []


def test_leave_and_disconnect_stop_delivery() -> None:
    async def scenario():
        manager = BroadcastManager()
        a, b = FakeSocket(), FakeSocket()
        await manager.connect(a)
        await manager.connect(b)
        await manager.join(a, "call_1")
        await manager.join(b, "call_1")

        await manager.leave(a, "call_1")
        await manager.disconnect(b)
        await manager.broadcast("call_1", "call-ended", {"callId": "call_1"})
        return manager, a, b

    manager, a, b = asyncio.run(scenario())
    assert a.sent == [] and b.sent == []
    assert manager.room_size("call_1") == 0


def test_failed_send_drops_client_from_all_rooms() -> None:
    async def scenario():
        manager = BroadcastManager()
        good, bad = FakeSocket(), FakeSocket(fail=True)
        for ws in (good, bad):
            await manager.connect(ws)
            await manager.join(ws, "call_1")
            await manager.join(ws, "call_2")

        await manager.broadcast("call_1", "speech-started", {"speaker": "ai"})
        return manager, good

    manager, good = asyncio.run(scenario())
    assert len(good.sent) == 1
    assert manager.room_size("call_1") == 1
    assert manager.room_size("call_2") == 1


def test_close_all_closes_sockets() -> None:
    async def scenario():
        manager = BroadcastManager()
        ws = FakeSocket()
        await manager.connect(ws)
        await manager.join(ws, "call_1")
        await manager.close_all()
        return manager, ws

    manager, ws = asyncio.run(scenario())
    assert ws.closed
    assert manager.room_size("call_1") == 0


def test_close_all_logs_failed_close_and_continues(caplog) -> None:
    class UnclosableSocket(FakeSocket):
        async def close(self):
            raise RuntimeError("already closed")

    async def scenario():
        manager = BroadcastManager()
        broken, ok = UnclosableSocket(), FakeSocket()
        for ws in (broken, ok):
            await manager.connect(ws)
            await manager.join(ws, "call_1")
        await manager.close_all()
        return manager, ok

    with caplog.at_level(logging.DEBUG, logger="services.websocket_manager"):
        manager, ok = asyncio.run(scenario())

    assert ok.closed
    assert manager.room_size("call_1") == 0
    assert "already closed" in caplog.text


def test_joined_client_receives_live_transcript(client, vapi) -> None:
    client.post("/api/calls/start", json={
        "candidateName": "Alice",
        "candidatePhone": "+15551234567",
        "position": "Backend Developer",
    })

    with client.websocket_connect("/ws/calls") as ws:
        assert ws.receive_json()["type"] == "hello"

        ws.send_json({"type": "join-call", "callId": "call_123"})
        assert ws.receive_json() == {"type": "joined-call", "callId": "call_123", "data": {"transcript": []}}

        response = client.post("/api/vapi/webhook", json={
            "type": "transcript",
            "call": {"id": "call_123"},
            "transcript": {"role": "user", "text": "Hello"},
        })
        assert response.status_code == 200

        message = ws.receive_json()
        assert message["type"] == "transcript-update"
        assert message["callId"] == "call_123"
        assert message["data"]["speaker"] == "user"
        assert message["data"]["text"] == "Hello"


def test_late_joiner_gets_transcript_snapshot(client, vapi) -> None:
    client.post("/api/calls/start", json={
        "candidateName": "Alice",
        "candidatePhone": "+15551234567",
        "position": "Backend Developer",
    })
    client.post("/api/vapi/webhook", json={
        "type": "transcript",
        "call": {"id": "call_123"},
        "transcript": {"role": "assistant", "text": "Welcome"},
    })

    with client.websocket_connect("/ws/calls") as ws:
        ws.receive_json()
        ws.send_json({"type": "join-call", "callId": "call_123"})
        joined = ws.receive_json()
        assert joined["type"] == "joined-call"
        assert [t["text"] for t in joined["data"]["transcript"]] == ["Welcome"]


class ScriptedSocket(FakeSocket):
    """Sends a join, then hangs up; runs a hook when a given message goes out."""

    def __init__(self, manager, call_id, on_sent=None):
        super().__init__()
        self.app = SimpleNamespace(state=SimpleNamespace(broadcaster=manager))
        self.incoming = [{"type": "join-call", "callId": call_id}]
        self.on_sent = on_sent or {}

    async def receive_json(self):
        if not self.incoming:
            raise WebSocketDisconnect()
        return self.incoming.pop(0)

    async def send_json(self, message):
        await super().send_json(message)
        hook = self.on_sent.pop(message["type"], None)
        if hook:
            await hook()


def test_transcript_arriving_while_joining_is_delivered_once(client, vapi, directory) -> None:
    client.post("/api/calls/start", json={
        "candidateName": "Alice",
        "candidatePhone": "+15551234567",
        "position": "Backend Developer",
    })
    client.post("/api/vapi/webhook", json={
        "type": "transcript",
        "call": {"id": "call_123"},
        "transcript": {"role": "assistant", "text": "Welcome"},
    })

    manager = BroadcastManager()

    async def transcript_arrives():
        payload = {"type": "transcript", "call": {"id": "call_123"}, "transcript": {"role": "user", "text": "Hi"}}
        with Session(engine) as session:
            await CallService.handle_webhook(payload, session, directory, manager)

    ws = ScriptedSocket(manager, "call_123", on_sent={"joined-call": transcript_arrives})
    asyncio.run(ws_calls(ws))

    joined = next(m for m in ws.sent if m["type"] == "joined-call")
    snapshot_texts = [t["text"] for t in joined["data"]["transcript"]]
    update_texts = [m["data"]["text"] for m in ws.sent if m["type"] == "transcript-update"]

    assert snapshot_texts == ["Welcome"]
    assert (snapshot_texts + update_texts).count("Hi") == 1
    assert (snapshot_texts + update_texts).count("Welcome") == 1
    assert manager.room_size("call_123") == 0
