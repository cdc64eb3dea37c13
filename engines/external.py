# quake-control/engines/external.py
# Purpose: Dedicated server as an OS process, commanded over RCON.
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from models.config import ServerConfig
from runtime.rcon import RconClient
from runtime.supervisor import ProcessSupervisor

from .base import Engine

logger = logging.getLogger(__name__)


class ExternalEngine(Engine):
    name = "external"

    def __init__(
        self,
        config: ServerConfig,
        *,
        supervisor: Optional[ProcessSupervisor] = None,
        rcon: Optional[RconClient] = None,
    ):
        self.config = config
        self.supervisor = supervisor or ProcessSupervisor()
        self.rcon = rcon or RconClient(
            config.rcon_host, config.rcon_port, config.rcon_password
        )

    async def start(self) -> None:
        if not await self.supervisor.spawn(self.config):
            logger.warning("server did not start: %s", self.config.executable)

    async def stop(self) -> None:
        self.supervisor.kill()
        self.rcon.close()

    def is_running(self) -> bool:
        return self.supervisor.is_running()

    async def execute(self, command: str) -> Optional[str]:
        return await self.rcon.send(command)

    def read_file(self, key: str) -> Optional[str]:
        path = Path(self.config.basedir) / key.lstrip("/")
        if not path.is_file():
            path = self._case_insensitive(path)
            if path is None:
                return None
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.debug("cannot read %s: %s", path, exc)
            return None

    def subscribe(
        self,
        on_line: Callable[[str], None],
        on_exit: Optional[Callable[[Optional[int]], None]] = None,
    ) -> Callable[[], None]:
        return self.supervisor.subscribe(on_line, on_exit)

    @staticmethod
    def _case_insensitive(path: Path) -> Optional[Path]:
        parent = path.parent
        if not parent.is_dir():
            return None
        wanted = path.name.lower()
        for entry in parent.iterdir():
            if entry.name.lower() == wanted and entry.is_file():
                return entry
        return None
