from __future__ import annotations

import asyncio
import shutil
import sys
from .state import DashboardState
from .events import pump_events

CLEAR = "\x1b[2J\x1b[H"

HELP = "Console: (type a command, /start, /stop, /snapshot, /prev, /next, /quit)"


def fmt_row(cols, widths):
    out = []
    for c, w in zip(cols, widths):
        s = (c if c is not None else "")[:w].ljust(w)
        out.append(s)
    return " ".join(out)


async def handle_input(loop, dbstate: DashboardState, msg: str) -> bool:
    """Apply one console line. Returns False when the user asked to quit."""
    if msg == "/quit":
        return False
    if msg == "/start":
        await loop.start_server()
    elif msg == "/stop":
        await loop.stop_server()
    elif msg == "/snapshot":
        await loop.capture_snapshot()
    elif msg == "/prev":
        dbstate.add_console(f"[history] {loop.recall_previous() or ''}")
    elif msg == "/next":
        dbstate.add_console(f"[history] {loop.recall_next()}")
    elif msg.startswith("/"):
        dbstate.add_console(f"[sys] unknown command: {msg}")
    else:
        await loop.issue_command(msg)
    return True


async def input_loop(loop, dbstate: DashboardState):
    ev_loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await ev_loop.connect_read_pipe(lambda: protocol, sys.stdin)
    while True:
        line = await reader.readline()
        if not line:
            await asyncio.sleep(0.1)
            continue
        msg = line.decode(errors="replace").strip()
        if not msg:
            continue
        if not await handle_input(loop, dbstate, msg):
            raise KeyboardInterrupt


async def draw_loop(loop, dbstate: DashboardState, refresh: float = 0.5):
    while True:
        cols = shutil.get_terminal_size((120, 40)).columns
        st = dbstate.status
        print(CLEAR, end="")
        print("Quake Control - Ctrl+C to exit".ljust(cols))
        print("-" * cols)
        headers = ["mode", "run", "busy", "poll", "map", "players", "entities"]
        widths = [10, 3, 4, 4, 16, 7, 8]
        print(fmt_row(headers, widths))
        print(
            fmt_row(
                [
                    st.get("mode", ""),
                    "Y" if st.get("running") else "N",
                    "Y" if st.get("busy") else "N",
                    "Y" if st.get("polling") else "N",
                    st.get("map", ""),
                    str(st.get("players", 0)),
                    str(st.get("entities", 0)),
                ],
                widths,
            )
        )
        print("-" * cols)
        print("Entities:")
        for e in dbstate.entities[:8]:
            print(f" #{e.get('index')} {e.get('classname')}"[:cols])
        print("-" * cols)
        print(HELP)
        for line in dbstate.console[-15:]:
            print(f" {line}"[:cols])
        sys.stdout.flush()
        await asyncio.sleep(refresh)


async def run_tui(loop, refresh: float = 0.5):
    dbstate = DashboardState()
    for line in loop.transcript.recent(200):
        dbstate.add_console(line)
    unsubscribe = loop.subscribe(dbstate.add_console)

    tasks = [
        asyncio.create_task(draw_loop(loop, dbstate, refresh)),
        asyncio.create_task(input_loop(loop, dbstate)),
        asyncio.create_task(pump_events(loop, dbstate, refresh)),
    ]
    try:
        await asyncio.gather(*tasks)
    except KeyboardInterrupt:
        pass
    finally:
        unsubscribe()
        for t in tasks:
            t.cancel()
