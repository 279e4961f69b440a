"""
Cluster configuration for kubeferry.

This module defines the configuration dataclass shared by the tunnel, docker
and etcd subsystems. A global ``config`` instance is provided; components
accept an explicit ``settings`` argument and fall back to it.

Usage:
    from kubeferry.config import config

    # Modify configuration before bringing tunnels up
    config.SSH_KEY_PATH = "/etc/kubeferry/id_ed25519"
    config.HOST_CONCURRENCY = 3
"""

import os
from dataclasses import dataclass

from kubeferry.models.enums import LogLevel


# =============================================================================
# Configuration Dataclass
# =============================================================================


@dataclass
class ClusterConfig:
    """
    Cluster-wide configuration.

    Attributes:
        SOCKETS_DIR: Directory holding one local tunnel socket per host.
        SSH_KEY_PATH: Default private key for hosts without their own key.
            There is no implicit default location.
        SSH_STDERR_IS_FAILURE: Treat any stderr output of a remote shell
            command as a failure.
        HOST_CONCURRENCY: How many hosts a fan-out operation touches at once.
        LOG_LEVEL: Logging verbosity level.
    """

    # -------------------------------------------------------------------------
    # SSH Configuration
    # -------------------------------------------------------------------------

    SSH_KEY_PATH: str | None = None
    SSH_PORT: int = 22
    SSH_CONNECT_TIMEOUT: float = 15.0
    SSH_KNOWN_HOSTS: str | None = None  # None disables host key checking
    SSH_STDERR_IS_FAILURE: bool = True

    # -------------------------------------------------------------------------
    # Tunnel Configuration
    # -------------------------------------------------------------------------

    SOCKETS_DIR: str = ".sockets"
    REMOTE_DOCKER_SOCKET: str = "/var/run/docker.sock"
    TUNNEL_TIMEOUT_SECONDS: float = 30.0
    TUNNEL_POLL_INTERVAL_SECONDS: float = 1.0
    TUNNEL_BRINGUP_RETRIES: int = 0
    FORWARD_BUFFER_SIZE: int = 65536

    # -------------------------------------------------------------------------
    # Docker Configuration
    # -------------------------------------------------------------------------

    DOCKER_API_VERSION: str = "1.24"
    DOCKER_TIMEOUT: int = 60
    DOCKER_TCP_PORT: int = 2375  # engines reached without a tunnel

    # -------------------------------------------------------------------------
    # Etcd Configuration
    # -------------------------------------------------------------------------

    ETCD_IMAGE: str = "quay.io/coreos/etcd:v3.5.16"
    ALPINE_IMAGE: str = "alpine:3.20"
    ETCD_CLIENT_PORT: int = 2379
    ETCD_PEER_PORT: int = 2380
    ETCD_DATA_DIR: str = "/var/lib/etcd"
    ETCD_SNAPSHOT_DIR: str = "/var/lib/etcd/snapshots"
    ETCD_CLUSTER_TOKEN: str = "etcd-cluster-1"
    CERT_DIR: str = "/etc/kubernetes/ssl"
    CLUSTER_DOMAIN: str = "cluster.local"

    # -------------------------------------------------------------------------
    # Health Check Configuration
    # -------------------------------------------------------------------------

    HEALTH_CHECK_RETRIES: int = 3
    HEALTH_CHECK_BACKOFF_SECONDS: float = 5.0
    HEALTH_CHECK_TIMEOUT_SECONDS: float = 10.0

    # -------------------------------------------------------------------------
    # Fan-out Configuration
    # -------------------------------------------------------------------------

    HOST_CONCURRENCY: int = 1

    # -------------------------------------------------------------------------
    # Logging Configuration
    # -------------------------------------------------------------------------

    LOG_LEVEL: LogLevel = LogLevel.INFO

    # =========================================================================
    # Helper Methods
    # =========================================================================

    def get_sockets_dir(self) -> str:
        """Get the absolute sockets directory path."""
        return os.path.abspath(os.path.expanduser(self.SOCKETS_DIR))

    def get_socket_path(self, hostname: str) -> str:
        """Get the local tunnel socket path for a host."""
        return os.path.join(self.get_sockets_dir(), f"docker-{hostname}.sock")

    def get_ssh_key_path(self, override: str | None = None) -> str | None:
        """Get the private key path, preferring a per-host override (None if unset)."""
        return override or self.SSH_KEY_PATH

    def get_snapshot_path(self, name: str) -> str:
        """Get the on-host path of a named etcd snapshot."""
        return f"{self.ETCD_SNAPSHOT_DIR.rstrip('/')}/{name}"

    def get_cert_path(self, filename: str) -> str:
        """Get the on-host path of a certificate file."""
        return f"{self.CERT_DIR.rstrip('/')}/{filename}"


# Global config instance
config = ClusterConfig()
