# quake-control/runtime/rcon.py
# Purpose: Connectionless Quake RCON over UDP with a single pending exchange.
from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Optional, Tuple

logger = logging.getLogger(__name__)

OOB_HEADER = b"\xff\xff\xff\xff"
DEFAULT_PORT = 27500

EndpointFactory = Callable[..., Awaitable[Tuple[Any, Any]]]


def encode_request(password: str, command: str) -> bytes:
    return OOB_HEADER + f"rcon {password} {command}".encode()


def decode_response(datagram: bytes) -> str:
    return datagram[len(OOB_HEADER):].decode(errors="replace").strip()


class _RconProtocol(asyncio.DatagramProtocol):
    def __init__(self, client: "RconClient"):
        self.client = client

    def datagram_received(self, data: bytes, addr: Any) -> None:
        self.client._on_datagram(data)

    def error_received(self, exc: Exception) -> None:
        self.client._on_socket_error(exc)


class RconClient:
    """One UDP socket, at most one outstanding request.

    The protocol carries no request id, so the next datagram that arrives is
    taken as the answer to whatever exchange is pending. Starting a second
    ``send`` before the first resolves replaces the pending slot; the first
    caller then times out even if a reply (to the second request) arrives.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        password: str = "",
        *,
        timeout: float = float(os.getenv("RCON_TIMEOUT", 2.0)),
        endpoint_factory: Optional[EndpointFactory] = None,
    ):
        self.host = host
        self.port = port
        self.password = password
        self.timeout = timeout
        self._endpoint_factory = endpoint_factory
        self._transport: Any = None
        self._protocol: Optional[_RconProtocol] = None
        self._pending: Optional[asyncio.Future[str]] = None
        self._open_lock = asyncio.Lock()

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    async def open(self) -> None:
        if self._transport is not None:
            return
        # concurrent first sends must share one socket
        async with self._open_lock:
            if self._transport is not None:
                return
            loop = asyncio.get_running_loop()
            factory = self._endpoint_factory or loop.create_datagram_endpoint
            self._transport, self._protocol = await factory(
                lambda: _RconProtocol(self), remote_addr=(self.host, self.port)
            )

    async def send(self, command: str) -> Optional[str]:
        """Send one command; ``None`` means no reply inside the timeout."""
        await self.open()
        packet = encode_request(self.password, command)
        fut: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._pending = fut
        try:
            self._transport.sendto(packet)
        except OSError as exc:
            logger.error("Error sending to %s:%s: %s", self.host, self.port, exc)
            self._clear(fut)
            raise
        try:
            return await asyncio.wait_for(fut, timeout=self.timeout)
        except asyncio.TimeoutError:
            self._clear(fut)
            return None

    def close(self) -> None:
        transport, self._transport = self._transport, None
        self._protocol = None
        if transport is None:
            return
        try:
            transport.close()
        except Exception as exc:
            logger.debug("ignoring error while closing rcon socket: %s", exc)

    # ------------------------------------------------------------------
    def _clear(self, fut: asyncio.Future[str]) -> None:
        if self._pending is fut:
            self._pending = None

    def _on_datagram(self, data: bytes) -> None:
        fut, self._pending = self._pending, None
        if fut is None or fut.done():
            logger.debug("discarding unsolicited datagram (%d bytes)", len(data))
            return
        fut.set_result(decode_response(data))

    def _on_socket_error(self, exc: Exception) -> None:
        logger.error("RCON socket error: %s", exc)
        fut, self._pending = self._pending, None
        if fut is not None and not fut.done():
            fut.set_exception(exc)


__all__ = ["RconClient", "encode_request", "decode_response", "OOB_HEADER"]
