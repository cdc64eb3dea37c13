from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import re
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional

from engines.base import Engine
from models.entities import SnapshotEntity
from models.state import ControlStateModel, ServerStatus
from runtime.buffers import BoundedBuffer, CommandHistory
from runtime.savegame import (
    classname_color,
    decode_savegame,
    format_hsl,
    snapshot_candidates,
)

logger = logging.getLogger(__name__)

_MAP_LINE = re.compile(r"^map:\s*(\S+)", re.M)
_PLAYERS_LINE = re.compile(r"^players:\s*(\d+)", re.M)


def parse_status(output: Optional[str], status: ServerStatus) -> bool:
    """Update ``status`` from a ``status`` reply; unmatched fields are kept."""
    if not output:
        return False
    matched = False
    if m := _MAP_LINE.search(output):
        status.current_map = m.group(1)
        matched = True
    if m := _PLAYERS_LINE.search(output):
        status.player_count = int(m.group(1))
        matched = True
    return matched


class ControlLoop:
    """Serializes console commands, status polls and snapshot captures.

    ``busy`` and ``polling`` are advisory flags: a poll tick is dropped while
    either is set, but nothing stops a caller from talking to the engine
    directly.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        poll_interval: float = float(os.getenv("POLL_INTERVAL", 1.0)),
        settle_delay: float = float(os.getenv("SNAPSHOT_SETTLE_DELAY", 1.0)),
        transcript_limit: int = int(os.getenv("CONSOLE_MAX_LINES", 1000)),
        save_name: str = os.getenv("SNAPSHOT_NAME", "snapshot"),
        game: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.engine = engine
        self.poll_interval = poll_interval
        self.settle_delay = settle_delay
        self.save_name = save_name
        self.game = game or getattr(getattr(engine, "config", None), "game_dir", "id1")
        self.state = ControlStateModel()
        self.transcript: BoundedBuffer[str] = BoundedBuffer(transcript_limit)
        self.history = CommandHistory()
        self.snapshot_entities: List[SnapshotEntity] = []
        self._sleep = sleep
        self._poll_task: Optional[asyncio.Task[None]] = None
        self._task_group: set[asyncio.Task[Any]] = set()
        self._line_listeners: List[Callable[[str], None]] = []
        self._unsubscribe = engine.subscribe(self.add_to_console, self._on_engine_exit)

    # ------------------------------------------------------------------
    # transcript
    # ------------------------------------------------------------------
    def add_to_console(self, line: str) -> None:
        self.transcript.append(line)
        for listener in list(self._line_listeners):
            try:
                listener(line)
            except Exception:
                logger.exception("console listener failed")

    def subscribe(self, listener: Callable[[str], None]) -> Callable[[], None]:
        self._line_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._line_listeners:
                self._line_listeners.remove(listener)

        return unsubscribe

    @contextlib.contextmanager
    def _busy(self) -> Iterator[None]:
        self.state.busy = True
        try:
            yield
        finally:
            self.state.busy = False

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------
    async def issue_command(self, text: str) -> Optional[str]:
        if not text or not text.strip():
            return None
        self.history.push(text)
        self.add_to_console(f"> {text}")
        with self._busy():
            try:
                response = await self.engine.execute(text)
            except Exception as exc:
                self.state.last_error = str(exc)
                self.add_to_console(f"[Error: {exc}]")
                return None
            if response:
                self.add_to_console(response)
            return response

    def recall_previous(self) -> Optional[str]:
        return self.history.previous()

    def recall_next(self) -> str:
        return self.history.next()

    # ------------------------------------------------------------------
    # server lifecycle
    # ------------------------------------------------------------------
    async def start_server(self) -> bool:
        if self.engine.is_running():
            return True
        with self._busy():
            try:
                await self.engine.start()
            except Exception as exc:
                self.state.last_error = str(exc)
                self.add_to_console(f"[Error: {exc}]")
                return False
        self.state.running = self.engine.is_running()
        if self.state.running:
            self.start_polling()
        return self.state.running

    async def stop_server(self) -> None:
        if not (self.state.running or self.engine.is_running()):
            return
        self.stop_polling()
        with self._busy():
            try:
                await self.engine.stop()
            except Exception as exc:
                self.state.last_error = str(exc)
                self.add_to_console(f"[Error: {exc}]")
                return
        self.state.running = False
        self.state.status = ServerStatus()
        self.add_to_console("[Server stopped]")

    def _on_engine_exit(self, code: Optional[int]) -> None:
        self.state.running = False
        self.stop_polling()

    # ------------------------------------------------------------------
    # status polling
    # ------------------------------------------------------------------
    def start_polling(self) -> None:
        if self._poll_task is not None:
            return
        self._poll_task = asyncio.create_task(self._poll_loop())

    def stop_polling(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is not None:
            task.cancel()

    @property
    def is_polling_active(self) -> bool:
        return self._poll_task is not None

    async def _poll_loop(self) -> None:
        try:
            while True:
                await self._sleep(self.poll_interval)
                # ticks run detached so a slow exchange makes later ticks skip
                self._track_task(self.poll_once())
        except asyncio.CancelledError:
            pass

    async def poll_once(self) -> bool:
        """One status tick; returns False when the tick was skipped."""
        if self.state.busy or self.state.polling or not self.engine.is_running():
            return False
        self.state.polling = True
        try:
            response = await self.engine.execute("status")
            parse_status(response, self.state.status)
        except Exception as exc:
            logger.debug("status poll failed: %s", exc)
        finally:
            self.state.polling = False
        return True

    # ------------------------------------------------------------------
    # snapshots
    # ------------------------------------------------------------------
    async def capture_snapshot(self) -> Optional[List[SnapshotEntity]]:
        if not self.engine.is_running():
            self.add_to_console("[Error] Engine not ready for snapshot")
            return None
        self.add_to_console("[Snapshot] Taking snapshot...")
        with self._busy():
            try:
                await self.engine.execute(f"save {self.save_name}")
                # TODO: external servers have no save-complete event; watch the
                # save file's mtime instead of waiting out the whole delay.
                await self.engine.wait_for_save(self.save_name, self.settle_delay)
                content = self._read_snapshot()
                if not content:
                    self.add_to_console(
                        "[Error] Could not find snapshot in engine filesystem"
                    )
                    return None
                entities = decode_savegame(content)
            except Exception as exc:
                self.add_to_console(f"[Error] Failed to read snapshot: {exc}")
                return None
        self.snapshot_entities = entities
        self.add_to_console(f"[Snapshot] Snapshot captured: {len(entities)} entities")
        return entities

    def _read_snapshot(self) -> Optional[str]:
        for key in snapshot_candidates(self.save_name, self.game):
            content = self.engine.read_file(key)
            if content:
                logger.debug("snapshot found at %s", key)
                return content
        return None

    def entity_rows(self) -> List[Dict[str, Any]]:
        return [
            {
                "index": e.index,
                "classname": e.classname,
                "color": format_hsl(classname_color(e.classname)),
                "properties": dict(e.properties),
            }
            for e in self.snapshot_entities
        ]

    # ------------------------------------------------------------------
    def snapshot(self) -> Dict[str, Any]:
        return {
            "mode": self.engine.name,
            "running": self.engine.is_running(),
            "busy": self.state.busy,
            "polling": self.state.polling,
            "map": self.state.status.current_map,
            "players": self.state.status.player_count,
            "history": len(self.history),
            "console_lines": len(self.transcript),
            "entities": len(self.snapshot_entities),
            "last_error": self.state.last_error,
        }

    def _track_task(self, coro: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._task_group.add(task)
        task.add_done_callback(self._task_group.discard)
        return task

    async def shutdown(self) -> None:
        poll = self._poll_task
        self.stop_polling()
        tasks = list(self._task_group)
        if poll is not None:
            tasks.append(poll)
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._task_group.clear()
        if self.engine.is_running():
            await self.engine.stop()
        self._unsubscribe()
