from __future__ import annotations

import asyncio
import json
import contextlib
from typing import Any, Callable, Optional

from aiohttp import web, WSMsgType

from models.events import ConsoleLineModel


class WebDashboard:
    """HTTP/WebSocket surface for the control loop.

    Mirrors the desktop shell's IPC: start/stop the server, send commands,
    read the buffered console and stream new lines as they are framed.
    """

    def __init__(
        self,
        loop,
        *,
        host: str = "0.0.0.0",
        port: int = 8000,
        refresh: float = 0.5,
        history_limit: int = 1000,
    ) -> None:
        self.loop = loop
        self.host = host
        self.port = port
        self.refresh = max(refresh, 0.1)
        self.history_limit = history_limit
        self._app = web.Application()
        self._runner: web.AppRunner | None = None
        self._site: web.BaseSite | None = None
        self._snapshot_task: asyncio.Task[None] | None = None
        self._clients: set[web.WebSocketResponse] = set()
        self._outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._sender_task: asyncio.Task[None] | None = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._build_routes()

    # ------------------------------------------------------------------
    # Lifecycle
    async def start(self) -> None:
        self._unsubscribe = self.loop.subscribe(self._handle_line)
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()
        self._sender_task = asyncio.create_task(self._drain_outbox())
        self._snapshot_task = asyncio.create_task(self._snapshot_loop())

    async def stop(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self._snapshot_task:
            self._snapshot_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._snapshot_task
            self._snapshot_task = None
        if self._sender_task:
            self._sender_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sender_task
            self._sender_task = None
        for ws in list(self._clients):
            await ws.close()
        self._clients.clear()
        if self._site:
            await self._site.stop()
            self._site = None
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    # ------------------------------------------------------------------
    def _build_routes(self) -> None:
        self._app.router.add_get("/", self._index)
        self._app.router.add_get("/ws", self._websocket_handler)
        self._app.router.add_get("/api/console", self._console_api)
        self._app.router.add_get("/api/status", self._status_api)
        self._app.router.add_post("/api/command", self._post_command)
        self._app.router.add_post("/api/server/start", self._start_server)
        self._app.router.add_post("/api/server/stop", self._stop_server)
        self._app.router.add_get("/api/snapshot", self._snapshot_api)
        self._app.router.add_post("/api/snapshot", self._capture_snapshot)

    # ------------------------------------------------------------------
    async def _index(self, request: web.Request) -> web.Response:
        return web.Response(text=self._render_index(), content_type="text/html")

    async def _websocket_handler(self, request: web.Request) -> web.StreamResponse:
        ws = web.WebSocketResponse(heartbeat=30)
        await ws.prepare(request)
        await ws.send_json({"type": "snapshot", "payload": self.loop.snapshot()})
        self._clients.add(ws)
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    try:
                        data = json.loads(msg.data)
                    except json.JSONDecodeError:
                        continue
                    if isinstance(data, dict) and data.get("type") == "command":
                        command = (data.get("command") or "").strip()
                        if command:
                            await self.loop.issue_command(command)
                elif msg.type == WSMsgType.ERROR:
                    break
        finally:
            self._clients.discard(ws)
            await ws.close()
        return ws

    async def _console_api(self, request: web.Request) -> web.Response:
        lines = self.loop.transcript.recent(self.history_limit)
        return web.json_response({"lines": lines})

    async def _status_api(self, request: web.Request) -> web.Response:
        return web.json_response(self.loop.snapshot())

    async def _post_command(self, request: web.Request) -> web.Response:
        try:
            data = await request.json()
        except Exception:
            raise web.HTTPBadRequest(text="invalid json")
        if not isinstance(data, dict):
            raise web.HTTPBadRequest(text="expected a json object")
        command = (data.get("command") or "").strip()
        if not command:
            raise web.HTTPBadRequest(text="missing command")
        response = await self.loop.issue_command(command)
        return web.json_response({"status": "ok", "response": response})

    async def _start_server(self, request: web.Request) -> web.Response:
        running = await self.loop.start_server()
        return web.json_response({"running": running})

    async def _stop_server(self, request: web.Request) -> web.Response:
        await self.loop.stop_server()
        return web.json_response({"running": self.loop.engine.is_running()})

    async def _snapshot_api(self, request: web.Request) -> web.Response:
        return web.json_response({"entities": self.loop.entity_rows()})

    async def _capture_snapshot(self, request: web.Request) -> web.Response:
        entities = await self.loop.capture_snapshot()
        if entities is None:
            raise web.HTTPConflict(
                text=json.dumps({"error": self.loop.transcript.recent(1)}),
                content_type="application/json",
            )
        return web.json_response({"entities": self.loop.entity_rows()})

    # ------------------------------------------------------------------
    def _handle_line(self, line: str) -> None:
        if not self._clients:
            return
        entry = ConsoleLineModel(source=self.loop.engine.name, content=line)
        self._outbox.put_nowait({"type": "line", "payload": entry.model_dump()})

    async def _snapshot_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.refresh)
                self._outbox.put_nowait(
                    {"type": "snapshot", "payload": self.loop.snapshot()}
                )
        except asyncio.CancelledError:
            pass

    async def _drain_outbox(self) -> None:
        # one sender keeps every client in console order
        try:
            while True:
                message = await self._outbox.get()
                await self._broadcast(message)
        except asyncio.CancelledError:
            pass

    async def _broadcast(self, message: dict[str, Any]) -> None:
        if not self._clients:
            return
        data = json.dumps(message)
        stale: list[web.WebSocketResponse] = []
        for ws in list(self._clients):
            if ws.closed:
                stale.append(ws)
                continue
            try:
                await ws.send_str(data)
            except ConnectionResetError:
                stale.append(ws)
            except RuntimeError:
                stale.append(ws)
        for ws in stale:
            self._clients.discard(ws)

    # ------------------------------------------------------------------
    def _render_index(self) -> str:
        return """<!DOCTYPE html>
<html lang=\"en\">
<head>
<meta charset=\"utf-8\" />
<title>Quake Control</title>
<style>
body { margin:0; font-family: system-ui, sans-serif; background:#1a1a2e; color:#e5e7eb; display:flex; height:100vh; }
#left { flex:2; display:flex; flex-direction:column; padding:1rem; gap:0.75rem; }
#right { width:32%; max-width:420px; padding:1rem; background:#111827; overflow-y:auto; }
#console { flex:1; background:#0b0f19; border:1px solid #1f2937; border-radius:8px; padding:0.75rem; overflow-y:auto; font-family:monospace; white-space:pre-wrap; }
form { display:flex; gap:0.5rem; }
input[type=text] { flex:1; padding:0.6rem; border-radius:6px; border:1px solid #374151; background:#0f172a; color:#f9fafb; font-family:monospace; }
button { padding:0.6rem 1rem; border-radius:6px; border:none; background:#3b82f6; color:white; cursor:pointer; }
.entity { padding:0.3rem 0.5rem; margin-bottom:0.25rem; border-radius:4px; font-size:0.85rem; color:#111; }
</style>
</head>
<body>
<div id=\"left\">
  <div style=\"display:flex; gap:0.5rem; align-items:center;\">
    <h1 style=\"margin:0; font-size:1.3rem; flex:1;\">Quake Control</h1>
    <span id=\"status\">connecting...</span>
    <button id=\"start\">Start</button>
    <button id=\"stop\">Stop</button>
    <button id=\"snap\">Snapshot</button>
  </div>
  <div id=\"console\"></div>
  <form id=\"input-form\">
    <input id=\"command\" type=\"text\" autocomplete=\"off\" placeholder=\"Console command...\" />
    <button type=\"submit\">Send</button>
  </form>
</div>
<div id=\"right\">
  <h2 style=\"margin-top:0;\">Entities</h2>
  <div id=\"entities\"></div>
</div>
<script>
const consoleEl = document.getElementById('console');
const statusEl = document.getElementById('status');
const entitiesEl = document.getElementById('entities');
const history = [];
let cursor = 0;

function appendLine(text) {
  consoleEl.textContent += text + '\\n';
  consoleEl.scrollTop = consoleEl.scrollHeight;
}

function renderStatus(s) {
  statusEl.textContent = `${s.mode} · ${s.running ? 'running' : 'stopped'} · ${s.map || '-'} · ${s.players} players`;
}

async function loadEntities() {
  const res = await fetch('/api/snapshot');
  const data = await res.json();
  entitiesEl.innerHTML = '';
  data.entities.forEach(e => {
    const row = document.createElement('div');
    row.className = 'entity';
    row.style.background = e.color;
    row.textContent = `#${e.index} ${e.classname}`;
    entitiesEl.appendChild(row);
  });
}

async function post(url, body) {
  return fetch(url, { method: 'POST', headers: {'Content-Type': 'application/json'}, body: JSON.stringify(body || {}) });
}

document.getElementById('start').onclick = () => post('/api/server/start');
document.getElementById('stop').onclick = () => post('/api/server/stop');
document.getElementById('snap').onclick = async () => { await post('/api/snapshot'); loadEntities(); };

const input = document.getElementById('command');
document.getElementById('input-form').addEventListener('submit', async (ev) => {
  ev.preventDefault();
  const command = input.value.trim();
  if (!command) return;
  history.push(command);
  cursor = history.length;
  input.value = '';
  await post('/api/command', { command });
});
input.addEventListener('keydown', (ev) => {
  if (ev.key === 'ArrowUp' && cursor > 0) { cursor--; input.value = history[cursor]; }
  if (ev.key === 'ArrowDown') {
    if (cursor < history.length - 1) { cursor++; input.value = history[cursor]; }
    else { cursor = history.length; input.value = ''; }
  }
});

(async () => {
  const res = await fetch('/api/console');
  const data = await res.json();
  data.lines.forEach(appendLine);
  loadEntities();
})();

const ws = new WebSocket(`ws://${location.host}/ws`);
ws.onmessage = (ev) => {
  const msg = JSON.parse(ev.data);
  if (msg.type === 'line') appendLine(msg.payload.content);
  if (msg.type === 'snapshot') renderStatus(msg.payload);
};
ws.onclose = () => { statusEl.textContent = 'disconnected'; };
</script>
</body>
</html>"""
