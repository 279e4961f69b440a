"""
Shared pytest fixtures for kubeferry tests.

Fixtures are function-scoped: every test gets its own sockets directory,
fake engines and hosts.
"""

import asyncio
import os
import shutil
import tempfile

import pytest
import pytest_asyncio

from fakes import FakeConnector, FakeSSHConnection, echo_handler, make_host
from kubeferry.config import ClusterConfig
from kubeferry.hosts.exceptions import SSHConnectionError
from kubeferry.pki.certs import EtcdClientIdentity


# =============================================================================
# Paths and Settings
# =============================================================================


@pytest.fixture
def short_tmp():
    """Temp dir with a short path; Unix socket paths are limited to ~108 bytes."""
    path = tempfile.mkdtemp(prefix="kf-")
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def settings(short_tmp):
    return ClusterConfig(
        SOCKETS_DIR=os.path.join(short_tmp, "s"),
        TUNNEL_TIMEOUT_SECONDS=1.0,
        TUNNEL_POLL_INTERVAL_SECONDS=0.05,
    )


# =============================================================================
# Hosts
# =============================================================================


@pytest.fixture
def etcd_hosts():
    """Etcd hosts A, B and C on 10.0.0.1-3."""
    return [
        make_host("A", "10.0.0.1"),
        make_host("B", "10.0.0.2"),
        make_host("C", "10.0.0.3"),
    ]


@pytest.fixture
def identity():
    """Placeholder identity; never turned into an SSL context in fake-transport tests."""
    return EtcdClientIdentity(ca_cert_pem=b"ca", cert_pem=b"cert", key_pem=b"key")


@pytest.fixture
def connector(etcd_hosts):
    return FakeConnector(etcd_hosts)


# =============================================================================
# Remote Endpoints
# =============================================================================


@pytest_asyncio.fixture
async def remote_engine(short_tmp):
    """Echo server on a Unix socket, playing the remote Docker engine."""
    path = os.path.join(short_tmp, "engine.sock")
    server = await asyncio.start_unix_server(echo_handler, path=path)
    yield path
    server.close()


@pytest_asyncio.fixture
async def remote_tcp_service():
    """Echo server on loopback TCP, playing a service on the remote network."""
    server = await asyncio.start_server(echo_handler, "127.0.0.1", 0)
    yield server.sockets[0].getsockname()[:2]
    server.close()


@pytest.fixture
def ssh_connector(remote_engine, remote_tcp_service):
    """SSH connector double; keeps the connections it handed out."""
    connections: list[FakeSSHConnection] = []

    async def connect(host, settings):
        conn = FakeSSHConnection(remote_engine, remote_tcp_service)
        connections.append(conn)
        return conn

    connect.connections = connections
    return connect


@pytest.fixture
def refusing_ssh_connector():
    async def connect(host, settings):
        raise SSHConnectionError(f"Can't connect to {host.address}:22: refused", host.hostname)

    return connect
