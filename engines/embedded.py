# quake-control/engines/embedded.py
# Purpose: In-process simulated server; commands are injected directly instead of sent over UDP.
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

from models.config import ServerConfig

from .base import Engine, EngineError

logger = logging.getLogger(__name__)

SAVE_VERSION = 5
MAX_CLIENTS = 8

CommandHandler = Callable[["EmbeddedEngine", List[str]], Optional[str]]

COMMANDS: Dict[str, CommandHandler] = {}


def command(name: str):
    def deco(fn: CommandHandler) -> CommandHandler:
        COMMANDS[name] = fn
        return fn

    return deco


class EmbeddedEngine(Engine):
    """A small stand-in for an engine running inside this process.

    It keeps a virtual filesystem keyed by path, so ``save`` writes real save
    text that the snapshot path reads back. Unlike the external process it can
    signal save completion, and ``stop`` resets every piece of state.
    """

    name = "embedded"

    def __init__(self, config: Optional[ServerConfig] = None):
        self.config = config or ServerConfig(mode="embedded")
        self.files: Dict[str, str] = {}
        self.map_name = ""
        self.players: List[str] = []
        self.entities: List[Dict[str, str]] = []
        self.started_at: Optional[float] = None
        self._running = False
        self._save_events: Dict[str, asyncio.Event] = {}
        self._line_listeners: List[Callable[[str], None]] = []
        self._exit_listeners: List[Callable[[Optional[int]], None]] = []

    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self.started_at = time.time()
        self._emit("[Embedded engine starting...]")
        if self.config.map:
            self.load_map(self.config.map)

    async def stop(self) -> None:
        was_running = self._running
        self._running = False
        self.files.clear()
        self.map_name = ""
        self.players.clear()
        self.entities.clear()
        self.started_at = None
        self._save_events.clear()
        if was_running:
            for listener in list(self._exit_listeners):
                try:
                    listener(0)
                except Exception:
                    logger.exception("exit listener failed")

    def is_running(self) -> bool:
        return self._running

    async def execute(self, command: str) -> Optional[str]:
        if not self._running:
            raise EngineError("Embedded engine not ready for commands")
        parts = command.split()
        if not parts:
            return None
        handler = COMMANDS.get(parts[0].lower())
        if handler is None:
            return f'Unknown command "{parts[0]}"'
        await asyncio.sleep(0)
        return handler(self, parts[1:])

    def read_file(self, key: str) -> Optional[str]:
        if key in self.files:
            return self.files[key]
        wanted = key.lower()
        for name, content in self.files.items():
            if name.lower() == wanted:
                return content
        return None

    def subscribe(
        self,
        on_line: Callable[[str], None],
        on_exit: Optional[Callable[[Optional[int]], None]] = None,
    ) -> Callable[[], None]:
        self._line_listeners.append(on_line)
        if on_exit is not None:
            self._exit_listeners.append(on_exit)

        def unsubscribe() -> None:
            if on_line in self._line_listeners:
                self._line_listeners.remove(on_line)
            if on_exit is not None and on_exit in self._exit_listeners:
                self._exit_listeners.remove(on_exit)

        return unsubscribe

    async def wait_for_save(self, save_name: str, timeout: float) -> bool:
        ev = self._save_events.setdefault(save_name, asyncio.Event())
        try:
            await asyncio.wait_for(ev.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    # ------------------------------------------------------------------
    # world
    # ------------------------------------------------------------------
    def load_map(self, name: str) -> None:
        self.map_name = name
        self.entities = [
            {"classname": "worldspawn", "model": f"maps/{name}.bsp", "message": name},
            {"classname": "info_player_start", "origin": "0 0 24", "angle": "90"},
            {"classname": "light", "origin": "0 0 128", "light": "300"},
        ]
        self._emit(f"Loading map {name}")

    def write_save(self, save_name: str) -> str:
        key = f"/{self.config.game_dir}/{save_name}.sav"
        self.files[key] = self._render_save()
        ev = self._save_events.setdefault(save_name, asyncio.Event())
        ev.set()
        return key

    def _render_save(self) -> str:
        elapsed = time.time() - (self.started_at or time.time())
        lines = [
            str(SAVE_VERSION),
            f"{self.map_name}_snapshot",
            *(["0"] * 16),
            "1",
            self.map_name,
            f"{elapsed:.6f}",
            "{",
            '"serverflags" "0"',
            "}",
        ]
        world, rest = self.entities[0], self.entities[1:]
        clients = [
            {"classname": "player", "netname": n, "frags": "0"} for n in self.players
        ]
        for entity in [world, *clients, *rest]:
            lines.append("{")
            lines.extend(f'"{k}" "{v}"' for k, v in entity.items())
            lines.append("}")
        return "\n".join(lines) + "\n"

    def _emit(self, line: str) -> None:
        for listener in list(self._line_listeners):
            try:
                listener(line)
            except Exception:
                logger.exception("line listener failed")


# ----------------------------------------------------------------------
# console commands
# ----------------------------------------------------------------------
@command("status")
def _status(engine: EmbeddedEngine, args: List[str]) -> str:
    return "\n".join(
        [
            "host:    quake-control embedded",
            f"map:     {engine.map_name or '(none)'}",
            f"players: {len(engine.players)} active ({MAX_CLIENTS} max)",
        ]
    )


@command("map")
def _map(engine: EmbeddedEngine, args: List[str]) -> str:
    if not args:
        return f'map is "{engine.map_name}"'
    engine.load_map(args[0])
    return f"map {args[0]} loaded"


@command("save")
def _save(engine: EmbeddedEngine, args: List[str]) -> str:
    if not engine.map_name:
        return "Not playing a local game."
    name = args[0] if args else "quick"
    key = engine.write_save(name)
    return f"Saving game to {key.lstrip('/')}..."


@command("addbot")
def _addbot(engine: EmbeddedEngine, args: List[str]) -> str:
    if len(engine.players) >= MAX_CLIENTS:
        return "Server is full."
    name = args[0] if args else f"bot{len(engine.players) + 1}"
    engine.players.append(name)
    return f"{name} entered the game"


@command("kick")
def _kick(engine: EmbeddedEngine, args: List[str]) -> str:
    if not args or args[0] not in engine.players:
        return "Player not found."
    engine.players.remove(args[0])
    return f"{args[0]} was kicked"


@command("echo")
def _echo(engine: EmbeddedEngine, args: List[str]) -> str:
    return " ".join(args)
