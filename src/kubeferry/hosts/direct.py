"""
Direct host access.

DirectHostConnector reaches hosts on the operator's own network: Docker over
``tcp://<address>:DOCKER_TCP_PORT`` and plain sockets for everything else.
It is the tunnel-free counterpart of HostTunnelPool.
"""

from kubeferry.config import ClusterConfig, config
from kubeferry.docker.client import RemoteDockerClient
from kubeferry.docker.exceptions import DockerError
from kubeferry.hosts.dialer import Dialer, direct_dialer_factory
from kubeferry.models.host import Host


class DirectHostConnector:
    """Connector for hosts whose Docker engine listens on the local network."""

    def __init__(self, settings: ClusterConfig | None = None):
        self.settings = settings or config

    def docker_url(self, host: Host) -> str:
        return f"tcp://{host.address}:{self.settings.DOCKER_TCP_PORT}"

    async def connect(self, host: Host) -> RemoteDockerClient:
        if host.docker_client is not None:
            return host.docker_client

        client = RemoteDockerClient(
            self.docker_url(host),
            host.hostname,
            api_version=self.settings.DOCKER_API_VERSION,
            timeout=self.settings.DOCKER_TIMEOUT,
        )
        try:
            await client.ping()
        except DockerError:
            client.close()
            raise
        host.docker_client = client
        return client

    def dialer_factory(self, host: Host) -> Dialer:
        return direct_dialer_factory(host)
