"""
Async WebSocket integration tests using a real uvicorn server.

Covers what the sync TestClient can't:
- The background sweep advancing rounds nobody closed
- The sweep reaping idle rooms and notifying subscribers
- Two players answering at the same instant

Requires: pytest-asyncio, httpx, websockets
"""
import sys
import os
import json
import time
import asyncio

import pytest
import pytest_asyncio
import httpx
import websockets

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import uvicorn
import config
from main import app
from session_gateway import session_gateway


# ---------------------------------------------------------------------------
# Fixtures & helpers
# ---------------------------------------------------------------------------

def clear_state():
    session_gateway.registry.rooms.clear()
    session_gateway.identity.users.clear()
    session_gateway.subscribers.clear()


@pytest_asyncio.fixture(autouse=True)
async def server_port(monkeypatch):
    """Start a real uvicorn server on a random port with a fast sweep."""
    clear_state()
    monkeypatch.setattr(config, "SWEEP_INTERVAL_SECONDS", 0.05)
    monkeypatch.setattr(config, "AUTO_ADVANCE_GRACE_SECONDS", 0)

    server_config = uvicorn.Config(app, host="127.0.0.1", port=0, log_level="warning")
    server = uvicorn.Server(server_config)
    serve_task = asyncio.create_task(server.serve())

    while not server.started:
        await asyncio.sleep(0.01)

    port = server.servers[0].sockets[0].getsockname()[1]
    yield port

    server.should_exit = True
    await serve_task
    clear_state()


async def setup_room(port, mode=config.MODE_FREE_RESPONSE):
    """Authenticate two users, create a room and join it. Returns (host, guest, code)."""
    async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}") as http:
        host = (await http.post("/api/auth/anonymous", json={"username": "Alice"})).json()["userId"]
        guest = (await http.post("/api/auth/anonymous", json={"username": "Bob"})).json()["userId"]
        res = await http.post("/api/rooms/create", json={"difficulty": "easy", "mode": mode},
                              headers={"x-user-id": host})
        assert res.status_code == 200
        code = res.json()["roomId"]
        res = await http.post(f"/api/rooms/join/{code}", headers={"x-user-id": guest})
        assert res.status_code == 200
    return host, guest, code


async def send_json(ws, msg):
    await ws.send(json.dumps(msg))


async def recv_json(ws, timeout=10.0):
    data = await asyncio.wait_for(ws.recv(), timeout=timeout)
    return json.loads(data)


async def recv_until(ws, predicate, timeout=10.0, max_messages=200):
    """Drain messages until one satisfies predicate, with timeout."""
    deadline = asyncio.get_event_loop().time() + timeout
    for _ in range(max_messages):
        remaining = deadline - asyncio.get_event_loop().time()
        if remaining <= 0:
            break
        msg = await recv_json(ws, timeout=remaining)
        if predicate(msg):
            return msg
    raise TimeoutError("Never received the expected message")


def ws_url(port, room_code, user_id):
    return f"ws://127.0.0.1:{port}/ws/{room_code}/{user_id}"


def is_update(pred):
    return lambda m: m.get("type") == "ROOM_UPDATE" and pred(m["room"])


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------

class TestAutoAdvance:
    @pytest.mark.asyncio
    async def test_unanswered_game_runs_to_completion(self, server_port):
        host, guest, code = await setup_room(server_port)
        async with websockets.connect(ws_url(server_port, code, guest)) as ws:
            await recv_json(ws)
            async with websockets.connect(ws_url(server_port, code, host)) as host_ws:
                await recv_json(host_ws)
                room = session_gateway.registry.get_room(code)
                room.round_duration = 0
                await send_json(host_ws, {"type": "START_GAME"})

                final = await recv_until(ws, is_update(lambda r: r["status"] == "finished"))
                assert final["room"]["currentRound"] == config.MAX_ROUNDS
                assert final["room"]["isTie"] is True
                assert final["room"]["winnerId"] is None

    @pytest.mark.asyncio
    async def test_snapshot_versions_never_go_backwards(self, server_port):
        host, guest, code = await setup_room(server_port)
        async with websockets.connect(ws_url(server_port, code, guest)) as ws:
            first = await recv_json(ws)
            room = session_gateway.registry.get_room(code)
            room.round_duration = 0
            async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{server_port}") as http:
                await http.post(f"/api/rooms/{code}/start", headers={"x-user-id": host})

            versions = [first["room"]["version"]]
            while True:
                msg = await recv_json(ws)
                versions.append(msg["room"]["version"])
                if msg["room"]["status"] == "finished":
                    break
            assert versions == sorted(set(versions))


class TestReaping:
    @pytest.mark.asyncio
    async def test_idle_room_closed_and_subscribers_told(self, server_port):
        host, guest, code = await setup_room(server_port)
        async with websockets.connect(ws_url(server_port, code, guest)) as ws:
            await recv_json(ws)
            room = session_gateway.registry.get_room(code)
            room.last_activity = time.time() - config.ROOM_TTL_SECONDS - 10

            msg = await recv_until(ws, lambda m: m.get("type") == "ROOM_DELETED")
            assert msg["roomId"] == code
            assert "inactivity" in msg["message"]
        assert code not in session_gateway.registry.rooms


# ---------------------------------------------------------------------------
# Concurrent answers
# ---------------------------------------------------------------------------

class TestSimultaneousAnswers:
    @pytest.mark.asyncio
    async def test_both_answers_land_once(self, server_port):
        host, guest, code = await setup_room(server_port, config.MODE_MULTIPLE_CHOICE)
        async with websockets.connect(ws_url(server_port, code, host)) as host_ws, \
                websockets.connect(ws_url(server_port, code, guest)) as guest_ws:
            await recv_json(host_ws)
            await recv_json(guest_ws)
            await send_json(host_ws, {"type": "START_GAME"})
            await recv_until(guest_ws, is_update(lambda r: r["status"] == "playing"))

            correct = session_gateway.registry.get_room(code).questions[0].correct_option
            answer = {"type": "SUBMIT_ANSWER", "round": 0, "answers": correct}
            await asyncio.gather(send_json(host_ws, answer), send_json(guest_ws, answer))

            is_ack = lambda m: m.get("type") == "ANSWER_ACK"
            host_ack, guest_ack = await asyncio.gather(recv_until(host_ws, is_ack),
                                                       recv_until(guest_ws, is_ack))
            assert host_ack["accepted"] and guest_ack["accepted"]
            assert host_ack["scoreEarned"] == guest_ack["scoreEarned"] == 1

            room = session_gateway.registry.get_room(code)
            assert room.round_closed()
            assert sorted(p.score for p in room.players) == [1, 1]
