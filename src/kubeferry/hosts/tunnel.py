"""
SSH tunnels to remote Docker engine sockets.

A HostTunnel owns one SSH connection to one host and exposes the host's
Docker Unix socket as a local Unix socket under the sockets directory. Every
local connection is forwarded over its own SSH channel, so any client that
expects a local Docker socket can talk to the remote engine unchanged.

HostTunnelPool owns all tunnels of a cluster and the sockets directory.
"""

import asyncio
import os
import shutil
from typing import Awaitable, Callable, Protocol

import asyncssh

from kubeferry.config import ClusterConfig, config
from kubeferry.docker.client import RemoteDockerClient
from kubeferry.docker.exceptions import DockerError
from kubeferry.hosts.bind_connection import close_writer, forward_streams
from kubeferry.hosts.dialer import Dialer, tunnel_dialer
from kubeferry.hosts.exceptions import (
    ConnectivityError,
    LocalListenError,
    RemoteDialError,
    SSHKeyFormatError,
    SSHKeyNotFoundError,
    TunnelTimeoutError,
)
from kubeferry.hosts.ssh import ssh_connect
from kubeferry.models.host import Host
from kubeferry.utils.logger import get_logger

logger = get_logger(__name__)

SSHConnector = Callable[[Host, ClusterConfig], Awaitable[asyncssh.SSHClientConnection]]
DockerClientFactory = Callable[[str, str, ClusterConfig], RemoteDockerClient]


class HostConnector(Protocol):
    """What the etcd manager needs to reach a host."""

    async def connect(self, host: Host) -> RemoteDockerClient: ...

    def dialer_factory(self, host: Host) -> Dialer: ...


# =============================================================================
# HostTunnel
# =============================================================================


class HostTunnel:
    """
    One SSH connection exposing one remote socket as one local socket.

    Attributes:
        host: The host this tunnel serves.
        socket_path: Local socket path, derived from the hostname.
        remote_socket: Remote Docker socket path.
        connection: The SSH connection while the tunnel is up.
    """

    def __init__(
        self,
        host: Host,
        settings: ClusterConfig | None = None,
        connect: SSHConnector = ssh_connect,
    ):
        self.host = host
        self.settings = settings or config
        self._connect = connect
        self.socket_path = self.settings.get_socket_path(host.hostname)
        self.remote_socket = host.docker_socket or self.settings.REMOTE_DOCKER_SOCKET
        self.connection: asyncssh.SSHClientConnection | None = None
        self._server: asyncio.AbstractServer | None = None
        self._streams: set[asyncio.Task] = set()

    @property
    def is_up(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def active_streams(self) -> int:
        """Number of forwarded connections currently in flight."""
        return len(self._streams)

    # =========================================================================
    # Bring-up
    # =========================================================================

    async def bring_up(self) -> None:
        """
        Connect over SSH and start serving the local socket.

        Calling this on a tunnel that is already up does nothing.

        Raises:
            ConnectivityError: SSH, remote socket or local listen failure.
        """
        if self.is_up:
            logger.debug(f"[SSH] Tunnel for host [{self.host.hostname}] is already up")
            return

        logger.info(f"[SSH] Start tunnel for host [{self.host.hostname}]")
        conn = await self._connect(self.host, self.settings)
        try:
            await self._probe_remote(conn)
            self._remove_stale_socket()
            self._server = await self._listen()
        except BaseException:
            conn.close()
            raise

        self.connection = conn
        self.host.socket_path = self.socket_path
        logger.info(
            f"[SSH] Tunnel up for host [{self.host.hostname}]: "
            f"{self.socket_path} -> {self.remote_socket}"
        )

    async def _probe_remote(self, conn: asyncssh.SSHClientConnection) -> None:
        """Make sure the remote socket accepts channels before listening."""
        try:
            _, writer = await conn.open_unix_connection(self.remote_socket)
        except (asyncssh.Error, OSError) as e:
            raise RemoteDialError(self.remote_socket, self.host.hostname, str(e)) from e
        writer.close()

    def _remove_stale_socket(self) -> None:
        if not os.path.exists(self.socket_path):
            return
        logger.debug(f"Removing stale socket file: {self.socket_path}")
        try:
            os.unlink(self.socket_path)
        except OSError as e:
            raise LocalListenError(self.socket_path, self.host.hostname, str(e)) from e

    async def _listen(self) -> asyncio.AbstractServer:
        try:
            os.makedirs(os.path.dirname(self.socket_path), exist_ok=True)
            return await asyncio.start_unix_server(
                self._handle_client, path=self.socket_path
            )
        except OSError as e:
            raise LocalListenError(self.socket_path, self.host.hostname, str(e)) from e

    # =========================================================================
    # Forwarding
    # =========================================================================

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ):
        """Forward one accepted local connection over a fresh SSH channel."""
        task = asyncio.current_task()
        self._streams.add(task)
        log_prefix = f"[SSH {self.host.hostname}]"

        try:
            conn = self.connection
            if conn is None:
                await close_writer(writer)
                return

            try:
                remote = await conn.open_unix_connection(self.remote_socket)
            except (asyncssh.Error, OSError) as e:
                logger.error(f"{log_prefix} Error while opening remote channel: {e}")
                await close_writer(writer)
                return

            logger.debug(f"{log_prefix} Forwarding new local connection")
            await forward_streams(
                (reader, writer), remote, self.settings.FORWARD_BUFFER_SIZE
            )
            logger.debug(f"{log_prefix} Forwarded connection closed")

        finally:
            self._streams.discard(task)

    # =========================================================================
    # Readiness and Teardown
    # =========================================================================

    async def wait_for_ready(self, timeout: float | None = None) -> None:
        """
        Poll until the local socket exists.

        Raises:
            TunnelTimeoutError: If the socket does not appear in time.
        """
        if timeout is None:
            timeout = self.settings.TUNNEL_TIMEOUT_SECONDS
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while not os.path.exists(self.socket_path):
            if loop.time() >= deadline:
                raise TunnelTimeoutError(self.host.hostname, timeout)
            await asyncio.sleep(self.settings.TUNNEL_POLL_INTERVAL_SECONDS)

    async def tear_down(self) -> None:
        """
        Stop serving, drop every forwarded stream and remove the socket file.

        Best effort: failures are logged, never raised.
        """
        server, self._server = self._server, None
        if server is not None:
            server.close()

        for task in list(self._streams):
            task.cancel()
        if self._streams:
            await asyncio.gather(*self._streams, return_exceptions=True)

        if server is not None:
            try:
                await asyncio.wait_for(server.wait_closed(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning(f"[SSH] Listener for [{self.host.hostname}] did not close in time")

        conn, self.connection = self.connection, None
        if conn is not None:
            conn.close()
            try:
                await asyncio.wait_for(conn.wait_closed(), timeout=5.0)
            except (asyncio.TimeoutError, OSError, asyncssh.Error) as e:
                logger.warning(f"[SSH] Closing connection to [{self.host.hostname}] failed: {e}")

        self.remove_socket_file()

        if self.host.docker_client is not None:
            self.host.docker_client.close()
        self.host.detach()
        logger.info(f"[SSH] Tunnel for host [{self.host.hostname}] is down")

    def remove_socket_file(self) -> None:
        logger.debug(f"Removing socket file: {self.socket_path}")
        try:
            os.remove(self.socket_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to remove socket file: {e}")


# =============================================================================
# HostTunnelPool
# =============================================================================


class HostTunnelPool:
    """
    Cluster-scope owner of host tunnels and the sockets directory.

    ``connect`` brings a host's tunnel up on first use and returns a Docker
    client bound to it; later calls reuse it. ``close`` tears every tunnel
    down and removes the sockets directory once no bring-up is in flight.

    Usage:
        async with HostTunnelPool(settings) as pool:
            client = await pool.connect(host)
    """

    def __init__(
        self,
        settings: ClusterConfig | None = None,
        connect: SSHConnector = ssh_connect,
        client_factory: DockerClientFactory = RemoteDockerClient.for_socket,
    ):
        self.settings = settings or config
        self._connect = connect
        self._client_factory = client_factory
        self._tunnels: dict[str, HostTunnel] = {}
        self._host_locks: dict[str, asyncio.Lock] = {}
        self._bringups_in_flight = 0
        self._idle = asyncio.Condition()
        self._closing = False

    async def __aenter__(self) -> "HostTunnelPool":
        self.create_socket_dir()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def create_socket_dir(self) -> None:
        sockets_dir = self.settings.get_sockets_dir()
        logger.debug(f"Creating sockets directory if not exist: {sockets_dir}")
        os.makedirs(sockets_dir, mode=0o755, exist_ok=True)

    def get_tunnel(self, host: Host) -> HostTunnel | None:
        return self._tunnels.get(host.hostname)

    # =========================================================================
    # Bring-up
    # =========================================================================

    async def ensure_tunnel(self, host: Host) -> HostTunnel:
        """Bring the host's tunnel up if needed and wait until it is ready."""
        async with self._idle:
            if self._closing:
                raise ConnectivityError("Tunnel pool is closing", host.hostname)
            self._bringups_in_flight += 1

        try:
            lock = self._host_locks.setdefault(host.hostname, asyncio.Lock())
            async with lock:
                tunnel = self._tunnels.get(host.hostname)
                if tunnel is None:
                    tunnel = HostTunnel(host, self.settings, self._connect)
                    self._tunnels[host.hostname] = tunnel
                if not tunnel.is_up:
                    self.create_socket_dir()
                    await self._bring_up_with_retries(tunnel)
                    await tunnel.wait_for_ready()
            return tunnel
        finally:
            async with self._idle:
                self._bringups_in_flight -= 1
                self._idle.notify_all()

    async def _bring_up_with_retries(self, tunnel: HostTunnel) -> None:
        attempts = 1 + max(0, self.settings.TUNNEL_BRINGUP_RETRIES)
        for attempt in range(1, attempts + 1):
            try:
                await tunnel.bring_up()
                return
            except (SSHKeyNotFoundError, SSHKeyFormatError):
                raise
            except ConnectivityError as e:
                if attempt == attempts:
                    raise
                logger.warning(
                    f"[SSH] Tunnel bring-up for [{tunnel.host.hostname}] failed "
                    f"(attempt {attempt}/{attempts}): {e}"
                )

    async def connect(self, host: Host) -> RemoteDockerClient:
        """
        Get a Docker client for the host, bringing its tunnel up if needed.

        Raises:
            ConnectivityError: If the tunnel cannot be brought up.
            TunnelTimeoutError: If the socket never appears.
            DockerConnectionError: If the engine does not answer through it.
        """
        tunnel = await self.ensure_tunnel(host)
        if host.docker_client is None:
            client = self._client_factory(tunnel.socket_path, host.hostname, self.settings)
            try:
                await client.ping()
            except DockerError:
                client.close()
                raise
            host.docker_client = client
        return host.docker_client

    def dialer_factory(self, host: Host) -> Dialer:
        """Resolve a host to a dialer that brings its tunnel up on first use."""

        async def dial(network: str, address: str):
            tunnel = await self.ensure_tunnel(host)
            return await tunnel_dialer(tunnel)(network, address)

        return dial

    # =========================================================================
    # Teardown
    # =========================================================================

    async def close(self) -> None:
        """Tear down every tunnel, then remove the sockets directory."""
        async with self._idle:
            self._closing = True
            await self._idle.wait_for(lambda: self._bringups_in_flight == 0)

        tunnels = list(self._tunnels.values())
        self._tunnels.clear()
        await asyncio.gather(*(t.tear_down() for t in tunnels), return_exceptions=True)
        self.remove_socket_dir()

    def remove_socket_dir(self) -> None:
        sockets_dir = self.settings.get_sockets_dir()
        logger.debug(f"Removing socket directory: {sockets_dir}")
        try:
            shutil.rmtree(sockets_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to remove socket dir: {e}")
