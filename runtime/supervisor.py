# quake-control/runtime/supervisor.py
# Purpose: Own at most one dedicated-server subprocess and publish its output as lines.

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, List, Optional

from models.config import DEFAULT_GAME, ServerConfig
from runtime.buffers import DEFAULT_LIMIT, BoundedBuffer
from runtime.framing import LineFramer

logger = logging.getLogger(__name__)

LineListener = Callable[[str], None]
ExitListener = Callable[[Optional[int]], None]
ProcessFactory = Callable[..., Awaitable[Any]]

READ_CHUNK = 4096


def quote_arg(arg: str) -> str:
    if " " in arg or "\t" in arg:
        return f'"{arg}"'
    return arg


def build_arguments(config: ServerConfig) -> List[str]:
    """Argument vector for a dedicated server; order matters to the engine."""
    args = [
        "-dedicated",
        "-basedir",
        config.basedir,
        "-game",
        config.game or DEFAULT_GAME,
        "+sv_public",
        "0",
    ]
    if config.rcon_password:
        args += ["+set", "rcon_password", config.rcon_password]
    args += ["+set", "sv_port", str(config.rcon_port)]
    if config.map:
        args += ["+map", config.map]
    return args


def render_command_line(executable: str, args: List[str]) -> str:
    return " ".join(quote_arg(a) for a in [executable, *args])


async def _default_process_factory(program: str, *args: str, cwd: str) -> Any:
    # stdin must be absent rather than a pipe: the engine polls console input
    # and fails when handed one.
    return await asyncio.create_subprocess_exec(
        program,
        *args,
        cwd=cwd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )


class ProcessSupervisor:
    """Spawns, watches and kills the server process.

    Output from stdout/stderr is framed into lines and delivered, in order, to
    every subscriber. The supervisor also keeps its own bounded history so a
    late subscriber can catch up via :meth:`get_buffered_output`.
    """

    def __init__(
        self,
        *,
        process_factory: Optional[ProcessFactory] = None,
        buffer_limit: int = DEFAULT_LIMIT,
    ):
        self._process_factory = process_factory or _default_process_factory
        self._process: Any = None
        self._framer = LineFramer()
        self._output: BoundedBuffer[str] = BoundedBuffer(buffer_limit)
        self._line_listeners: List[LineListener] = []
        self._exit_listeners: List[ExitListener] = []
        self._readers: set[asyncio.Task[Any]] = set()
        self.executable: Optional[str] = None
        self.args: List[str] = []
        self.cwd: Optional[str] = None

    # ------------------------------------------------------------------
    # subscription
    # ------------------------------------------------------------------
    def subscribe(
        self, on_line: LineListener, on_exit: Optional[ExitListener] = None
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

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def spawn(self, config: ServerConfig) -> bool:
        if self._process is not None:
            self.kill()

        args = build_arguments(config)
        executable = os.path.join(config.basedir, config.executable)
        self._emit_line(
            f"[Supervisor] Spawning: {render_command_line(executable, args)}"
        )
        logger.debug("protocol flavor %s", config.protocol)

        framer = LineFramer()
        try:
            process = await self._process_factory(executable, *args, cwd=config.basedir)
        except OSError as exc:
            self._on_error(exc)
            return False

        self._process = process
        self._framer = framer
        self.executable = executable
        self.args = args
        self.cwd = config.basedir
        self._track_reader(self._read_output(process, framer))
        return True

    def kill(self) -> None:
        process = self._process
        if process is None:
            return
        self._process = None
        try:
            process.kill()
        except ProcessLookupError:
            logger.debug("process already gone")

    def is_running(self) -> bool:
        return self._process is not None

    @property
    def pid(self) -> Optional[int]:
        return getattr(self._process, "pid", None)

    def send_input(self, text: str) -> None:
        process = self._process
        stdin = getattr(process, "stdin", None) if process is not None else None
        if stdin is None:
            logger.info("Cannot send %r - no process or stdin", text)
            return
        logger.debug("stdin <- %s", text)
        stdin.write((text + "\n").encode())

    def get_buffered_output(self) -> List[str]:
        return self._output.snapshot()

    async def wait_closed(self) -> None:
        """Wait until every reader task has delivered its exit event."""
        if self._readers:
            await asyncio.gather(*list(self._readers), return_exceptions=True)

    async def shutdown(self) -> None:
        self.kill()
        tasks = list(self._readers)
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._readers.clear()

    # ------------------------------------------------------------------
    # stream handling
    # ------------------------------------------------------------------
    def _track_reader(self, coro: Awaitable[Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._readers.add(task)
        task.add_done_callback(self._readers.discard)
        return task

    async def _read_output(self, process: Any, framer: LineFramer) -> None:
        stream = process.stdout
        if stream is not None:
            while True:
                chunk = await stream.read(READ_CHUNK)
                if not chunk:
                    break
                self._on_data(chunk, framer)
        code = await process.wait()
        self._on_exit(code, process, framer)

    def _on_data(self, data: bytes, framer: Optional[LineFramer] = None) -> None:
        for line in (framer or self._framer).feed(data):
            self._emit_line(line)

    def _on_exit(
        self,
        code: Optional[int],
        process: Any = None,
        framer: Optional[LineFramer] = None,
    ) -> None:
        tail = (framer or self._framer).flush()
        if tail:
            self._emit_line(tail)
        self._emit_line(f"[Server exited with code {code}]")
        # a replaced process exiting must not disown its successor
        replaced = self._process is not None and self._process is not process
        if process is not None and replaced:
            return
        self._process = None
        for listener in list(self._exit_listeners):
            try:
                listener(code)
            except Exception:
                logger.exception("exit listener failed")

    def _on_error(self, err: BaseException) -> None:
        self._emit_line(f"[Error: {err}]")
        self._process = None

    def _emit_line(self, line: str) -> None:
        logger.debug("[server] %s", line)
        self._output.append(line)
        for listener in list(self._line_listeners):
            try:
                listener(line)
            except Exception:
                logger.exception("line listener failed")


__all__ = [
    "ProcessSupervisor",
    "build_arguments",
    "quote_arg",
    "render_command_line",
]
