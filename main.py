from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

from console_loop import ControlLoop
from dashboard.state import DashboardState
from dashboard.tui import handle_input
from engines import get_engine
from models.config import ServerConfig

logger = logging.getLogger(__name__)


def printer(line: str) -> None:
    print(line, flush=True)


async def forward_stdin(loop: ControlLoop, readline=None) -> bool:
    """Feed stdin lines to the console.

    Returns False when the user typed ``/quit`` and True when input ran out.
    """
    readline = readline or sys.stdin.readline
    scratch = DashboardState()
    ev_loop = asyncio.get_running_loop()
    while True:
        line = await ev_loop.run_in_executor(None, readline)
        if not line:
            return True
        line = line.strip()
        if not line:
            continue
        if not await handle_input(loop, scratch, line):
            return False
        while scratch.console:
            printer(scratch.console.pop(0))


async def run(
    config: ServerConfig,
    ui: str,
    *,
    refresh: float,
    web_host: str,
    web_port: int,
    autostart: bool = True,
):
    engine = get_engine(config.mode, config)
    loop = ControlLoop(engine)

    web_dash = None
    stdin_task: asyncio.Task[bool] | None = None
    try:
        if autostart:
            await loop.start_server()
        if ui == "web" and os.getenv("DASH_ENABLED", "true").lower() == "true":
            from dashboard.web import WebDashboard

            web_dash = WebDashboard(
                loop,
                host=web_host,
                port=web_port,
                refresh=refresh,
            )
            await web_dash.start()
            stopper = asyncio.Event()
            try:
                await stopper.wait()
            except asyncio.CancelledError:
                pass
        elif ui == "tui" and os.getenv("DASH_ENABLED", "true").lower() == "true":
            from dashboard.tui import run_tui

            await run_tui(loop, refresh=refresh)
        else:
            loop.subscribe(printer)
            stdin_task = asyncio.create_task(forward_stdin(loop))
            if await stdin_task:
                logger.info("stdin closed; serving until interrupted")
                await asyncio.Event().wait()
    except asyncio.CancelledError:
        pass
    finally:
        if stdin_task:
            stdin_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await stdin_task
        if web_dash:
            await web_dash.stop()
        await loop.shutdown()


def main():
    default_ui = os.getenv("CONTROL_UI", "tui")
    default_refresh = float(os.getenv("DASH_REFRESH", "0.5"))
    default_host = os.getenv("CONTROL_WEB_HOST", "0.0.0.0")
    default_port = int(os.getenv("CONTROL_WEB_PORT", "8000"))
    p = argparse.ArgumentParser(description="Quake dedicated server control plane")
    p.add_argument(
        "--mode",
        choices=["external", "embedded"],
        default=None,
        help="Run a dedicated server process or the in-process engine.",
    )
    p.add_argument("--basedir", default=None, help="Quake install directory.")
    p.add_argument("--game", default=None, help="Game subdirectory (default id1).")
    p.add_argument("--map", default=None, help="Map to load on start.")
    p.add_argument("--engine", default=None, help="Server executable inside basedir.")
    p.add_argument("--rcon-host", default=None, help="RCON host.")
    p.add_argument("--rcon-port", type=int, default=None, help="RCON/server port.")
    p.add_argument("--rcon-password", default=None, help="Shared RCON password.")
    p.add_argument(
        "--no-start",
        action="store_true",
        help="Do not start the server automatically.",
    )
    p.add_argument(
        "--ui",
        choices=["tui", "web", "none"],
        default=default_ui,
        help="Surface to launch (tui, web, none).",
    )
    p.add_argument(
        "--ui-refresh",
        type=float,
        default=default_refresh,
        help="Refresh interval for dashboards (seconds).",
    )
    p.add_argument("--web-host", default=default_host, help="Host for the web UI.")
    p.add_argument("--web-port", type=int, default=default_port, help="Port for the web UI.")
    p.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "WARNING"),
        help="Python logging level.",
    )
    args = p.parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = ServerConfig.from_env(
        mode=args.mode,
        basedir=args.basedir,
        game=args.game,
        map=args.map,
        executable=args.engine,
        rcon_host=args.rcon_host,
        rcon_port=args.rcon_port,
        rcon_password=args.rcon_password,
    )
    asyncio.run(
        run(
            config,
            ui=args.ui,
            refresh=args.ui_refresh,
            web_host=args.web_host,
            web_port=args.web_port,
            autostart=not args.no_start,
        )
    )


if __name__ == "__main__":
    main()
