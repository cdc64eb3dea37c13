from __future__ import annotations
import abc
import asyncio
from typing import Callable, Optional


class EngineError(Exception): ...


class Engine(abc.ABC):
    """A running Quake server the control loop can command."""

    name: str = "engine"

    @abc.abstractmethod
    async def start(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def stop(self) -> None:
        """Tear the engine down; a later ``start`` begins from a clean state."""
        raise NotImplementedError

    @abc.abstractmethod
    def is_running(self) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    async def execute(self, command: str) -> Optional[str]:
        """Run one console command; ``None`` when the engine gave no reply."""
        raise NotImplementedError

    @abc.abstractmethod
    def read_file(self, key: str) -> Optional[str]:
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self,
        on_line: Callable[[str], None],
        on_exit: Optional[Callable[[Optional[int]], None]] = None,
    ) -> Callable[[], None]:
        raise NotImplementedError

    async def wait_for_save(self, save_name: str, timeout: float) -> bool:
        """Wait for ``save_name`` to be written.

        Engines without a completion signal just let ``timeout`` pass and
        return False; the caller then probes the filesystem anyway.
        """
        await asyncio.sleep(max(timeout, 0))
        return False
