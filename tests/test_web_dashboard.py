import asyncio
import json
import socket

import aiohttp
import pytest

from console_loop import ControlLoop
from dashboard.web import WebDashboard
from engines import EmbeddedEngine
from models.config import ServerConfig


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.mark.asyncio
async def test_web_dashboard_drives_embedded_server():
    engine = EmbeddedEngine(ServerConfig(mode="embedded", map="e1m1"))
    loop = ControlLoop(engine, poll_interval=10.0, settle_delay=0.5)

    port = _unused_port()
    dash = WebDashboard(loop, host="127.0.0.1", port=port, refresh=0.1)
    await dash.start()
    base = f"http://127.0.0.1:{port}"

    try:
        async with aiohttp.ClientSession() as session:
            resp = await session.post(f"{base}/api/server/start")
            assert (await resp.json())["running"] is True

            resp = await session.post(f"{base}/api/command", json={"command": "status"})
            data = await resp.json()
            assert data["status"] == "ok"
            assert "map:     e1m1" in data["response"]

            resp = await session.post(f"{base}/api/command", json={"command": "  "})
            assert resp.status == 400
            resp = await session.post(f"{base}/api/command", data="not json")
            assert resp.status == 400

            resp = await session.get(f"{base}/api/console")
            lines = (await resp.json())["lines"]
            assert "> status" in lines
            assert "[Embedded engine starting...]" in lines

            resp = await session.post(f"{base}/api/snapshot")
            assert resp.status == 200
            entities = (await resp.json())["entities"]
            assert entities[0]["classname"] == "worldspawn"
            assert entities[0]["color"].startswith("hsl(")

            resp = await session.get(f"{base}/api/status")
            status = await resp.json()
            assert status["mode"] == "embedded"
            assert status["entities"] == len(entities)

            resp = await session.post(f"{base}/api/server/stop")
            assert (await resp.json())["running"] is False

            resp = await session.post(f"{base}/api/snapshot")
            assert resp.status == 409
    finally:
        await dash.stop()
        await loop.shutdown()


@pytest.mark.asyncio
async def test_websocket_streams_console_lines():
    engine = EmbeddedEngine(ServerConfig(mode="embedded"))
    loop = ControlLoop(engine, poll_interval=10.0)
    await loop.start_server()

    port = _unused_port()
    dash = WebDashboard(loop, host="127.0.0.1", port=port, refresh=5.0)
    await dash.start()

    try:
        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(f"http://127.0.0.1:{port}/ws") as ws:
                first = await ws.receive_json(timeout=2)
                assert first["type"] == "snapshot"
                assert first["payload"]["running"] is True

                await ws.send_json({"type": "command", "command": "echo hello"})
                seen = []
                while "hello" not in seen:
                    msg = await ws.receive_json(timeout=2)
                    if msg["type"] == "line":
                        assert msg["payload"]["source"] == "embedded"
                        seen.append(msg["payload"]["content"])
                assert seen == ["> echo hello", "hello"]
    finally:
        await dash.stop()
        await loop.shutdown()
        await asyncio.sleep(0)


class SlowFirstClient:
    """WebSocket stand-in that stalls on its first send."""

    def __init__(self, name, stall):
        self.name = name
        self.stall = stall
        self.closed = False
        self.received = []

    async def send_str(self, data):
        first = not self.received
        self.received.append(json.loads(data)["payload"]["content"])
        if first and self.stall:
            await asyncio.sleep(0.05)


@pytest.mark.asyncio
async def test_lines_reach_every_client_in_console_order():
    engine = EmbeddedEngine(ServerConfig(mode="embedded"))
    loop = ControlLoop(engine, poll_interval=10.0)
    dash = WebDashboard(loop, host="127.0.0.1", port=_unused_port())
    slow = SlowFirstClient("slow", stall=True)
    fast = SlowFirstClient("fast", stall=False)
    dash._clients.update([slow, fast])
    sender = asyncio.create_task(dash._drain_outbox())

    try:
        for line in ("one", "two", "three"):
            dash._handle_line(line)
        await asyncio.sleep(0.2)
        assert slow.received == ["one", "two", "three"]
        assert fast.received == ["one", "two", "three"]
    finally:
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
        await loop.shutdown()


@pytest.mark.asyncio
async def test_command_body_must_be_an_object():
    engine = EmbeddedEngine(ServerConfig(mode="embedded"))
    loop = ControlLoop(engine, poll_interval=10.0)
    await loop.start_server()

    port = _unused_port()
    dash = WebDashboard(loop, host="127.0.0.1", port=port, refresh=5.0)
    await dash.start()

    try:
        async with aiohttp.ClientSession() as session:
            for body in ([], "status", 7):
                resp = await session.post(
                    f"http://127.0.0.1:{port}/api/command", json=body
                )
                assert resp.status == 400
            assert len(loop.history) == 0
    finally:
        await dash.stop()
        await loop.shutdown()
