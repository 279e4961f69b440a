"""
Transport dialers.

A dialer opens a stream connection to ``(network, address)`` on behalf of one
host. ``network`` is ``"tcp"`` (address ``"host:port"``) or ``"unix"``
(address is a socket path). A dialer factory resolves a Host to its dialer:

- ``direct_dialer_factory``: plain sockets on the operator's network
- ``tunnel_dialer``: through a HostTunnel (local socket or SSH channels)

``DialerRelay`` exposes any dialer as an ephemeral loopback TCP listener so
that ordinary client libraries (httpx) can be layered over it.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Awaitable, Callable

import asyncssh

from kubeferry.hosts.bind_connection import DEFAULT_BUFFER_SIZE, close_writer, forward_streams
from kubeferry.hosts.exceptions import ConnectivityError, DialError
from kubeferry.models.host import Host
from kubeferry.utils.logger import get_logger

if TYPE_CHECKING:
    from kubeferry.hosts.tunnel import HostTunnel

logger = get_logger(__name__)

Streams = tuple[asyncio.StreamReader, asyncio.StreamWriter]
Dialer = Callable[[str, str], Awaitable[Streams]]
DialerFactory = Callable[[Host], Dialer]

NETWORK_TCP = "tcp"
NETWORK_UNIX = "unix"


def split_host_port(address: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into its parts."""
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid tcp address: '{address}'")
    return host.strip("[]"), int(port)


# =============================================================================
# Direct Dialer
# =============================================================================


def direct_dialer_factory(host: Host) -> Dialer:
    """Resolve a host to a dialer that uses plain local-network sockets."""

    async def dial(network: str, address: str) -> Streams:
        try:
            if network == NETWORK_UNIX:
                return await asyncio.open_unix_connection(address)
            if network == NETWORK_TCP:
                target_host, target_port = split_host_port(address)
                return await asyncio.open_connection(target_host, target_port)
        except (OSError, ValueError) as e:
            raise DialError(network, address, host.hostname, str(e)) from e
        raise DialError(network, address, host.hostname, "unsupported network")

    return dial


# =============================================================================
# Tunnel Dialer
# =============================================================================


def tunnel_dialer(tunnel: HostTunnel) -> Dialer:
    """
    Build a dialer that goes through a host's tunnel.

    Unix dials to the host's Docker socket use the local tunnel socket; other
    unix paths and all tcp addresses are opened as SSH channels on the
    tunnel's connection, so they resolve from the remote host's point of view.
    """
    host = tunnel.host

    async def dial(network: str, address: str) -> Streams:
        conn = tunnel.connection
        try:
            if network == NETWORK_UNIX:
                if address in ("", tunnel.remote_socket) and tunnel.is_up:
                    return await asyncio.open_unix_connection(tunnel.socket_path)
                if conn is None:
                    raise DialError(network, address, host.hostname, "tunnel is down")
                return await conn.open_unix_connection(address)
            if network == NETWORK_TCP:
                if conn is None:
                    raise DialError(network, address, host.hostname, "tunnel is down")
                target_host, target_port = split_host_port(address)
                return await conn.open_connection(target_host, target_port)
        except (OSError, ValueError, asyncssh.Error) as e:
            raise DialError(network, address, host.hostname, str(e)) from e
        raise DialError(network, address, host.hostname, "unsupported network")

    return dial


# =============================================================================
# Dialer Relay
# =============================================================================


class DialerRelay:
    """
    Loopback TCP listener that forwards every connection through a dialer.

    Usage:
        async with DialerRelay(dial, "tcp", "10.0.0.1:2379") as (ip, port):
            ...  # connect to ip:port as if it were the target
    """

    def __init__(
        self,
        dial: Dialer,
        network: str,
        address: str,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ):
        self.dial = dial
        self.network = network
        self.address = address
        self.buffer_size = buffer_size
        self._server: asyncio.AbstractServer | None = None
        self._handlers: set[asyncio.Task] = set()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        task = asyncio.current_task()
        self._handlers.add(task)
        try:
            try:
                remote = await self.dial(self.network, self.address)
            except ConnectivityError as e:
                logger.debug(f"Relay to {self.network} '{self.address}' failed: {e}")
                await close_writer(writer)
                return
            await forward_streams((reader, writer), remote, self.buffer_size)
        finally:
            self._handlers.discard(task)

    async def __aenter__(self) -> tuple[str, int]:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        port = self._server.sockets[0].getsockname()[1]
        logger.debug(f"Relay 127.0.0.1:{port} -> {self.network} '{self.address}'")
        return "127.0.0.1", port

    async def __aexit__(self, exc_type, exc, tb):
        if self._server is None:
            return
        self._server.close()
        for task in list(self._handlers):
            task.cancel()
        if self._handlers:
            await asyncio.gather(*self._handlers, return_exceptions=True)
        await self._server.wait_closed()
        self._server = None
