"""Pytest configuration: asyncio tests without external plugins, plus fakes
for the subprocess and UDP endpoints the control plane talks to."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, List, Optional

import pytest


@pytest.hookimpl(tryfirst=True)
def pytest_configure(config: pytest.Config) -> None:
    """Register the custom ``asyncio`` marker used throughout the test suite."""

    config.addinivalue_line(
        "markers",
        "asyncio: mark a test as running inside an asyncio event loop",
    )


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute ``async def`` tests by driving them with a fresh event loop."""

    test_function = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_function):
        return None

    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        loop.run_until_complete(test_function(**pyfuncitem.funcargs))
        loop.run_until_complete(loop.shutdown_asyncgens())
    finally:
        asyncio.set_event_loop(None)
        loop.close()
    return True


# ----------------------------------------------------------------------
# subprocess fakes
# ----------------------------------------------------------------------
class FakeStream:
    """stdout stand-in; chunks are queued by the test, ``b""`` means EOF."""

    def __init__(self) -> None:
        self._chunks: List[bytes] = []
        self._closed = False
        self._wakeup: Optional[asyncio.Event] = None

    def _event(self) -> asyncio.Event:
        if self._wakeup is None:
            self._wakeup = asyncio.Event()
        return self._wakeup

    def feed(self, chunk: bytes) -> None:
        self._chunks.append(chunk)
        self._event().set()

    def close(self) -> None:
        self._closed = True
        self._event().set()

    async def read(self, n: int = -1) -> bytes:
        while not self._chunks and not self._closed:
            ev = self._event()
            ev.clear()
            await ev.wait()
        if self._chunks:
            return self._chunks.pop(0)
        return b""


class FakeStdin:
    def __init__(self) -> None:
        self.written: List[bytes] = []

    def write(self, data: bytes) -> None:
        self.written.append(data)


class FakeProcess:
    def __init__(self, program: str, args: tuple, cwd: str, with_stdin: bool = False):
        self.program = program
        self.args = list(args)
        self.cwd = cwd
        self.pid = 4242
        self.stdout = FakeStream()
        self.stdin = FakeStdin() if with_stdin else None
        self.returncode: Optional[int] = None
        self.killed = False

    def exit(self, code: int = 0) -> None:
        self.returncode = code
        self.stdout.close()

    def kill(self) -> None:
        self.killed = True
        if self.returncode is None:
            self.returncode = -9
        self.stdout.close()

    async def wait(self) -> Optional[int]:
        return self.returncode


class FakeProcessFactory:
    def __init__(self) -> None:
        self.processes: List[FakeProcess] = []
        self.error: Optional[OSError] = None
        self.with_stdin = False

    async def __call__(self, program: str, *args: str, cwd: str) -> FakeProcess:
        if self.error is not None:
            raise self.error
        proc = FakeProcess(program, args, cwd, with_stdin=self.with_stdin)
        self.processes.append(proc)
        return proc

    @property
    def last(self) -> FakeProcess:
        return self.processes[-1]


# ----------------------------------------------------------------------
# datagram fakes
# ----------------------------------------------------------------------
class FakeTransport:
    def __init__(self) -> None:
        self.sent: List[bytes] = []
        self.closed = False
        self.send_error: Optional[OSError] = None
        self.close_error: Optional[Exception] = None

    def sendto(self, data: bytes, addr: Any = None) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(data)

    def close(self) -> None:
        if self.close_error is not None:
            raise self.close_error
        self.closed = True


class FakeEndpointFactory:
    def __init__(self) -> None:
        self.transport = FakeTransport()
        self.protocol: Any = None
        self.remote_addr: Any = None
        self.opened = 0

    async def __call__(self, protocol_factory, remote_addr=None):
        self.opened += 1
        self.remote_addr = remote_addr
        self.protocol = protocol_factory()
        return self.transport, self.protocol

    def reply(self, data: bytes) -> None:
        self.protocol.datagram_received(data, self.remote_addr)


@pytest.fixture
def process_factory() -> FakeProcessFactory:
    return FakeProcessFactory()


@pytest.fixture
def endpoint() -> FakeEndpointFactory:
    return FakeEndpointFactory()
