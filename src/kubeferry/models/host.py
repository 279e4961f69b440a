"""
Host model and host-set helpers.

A Host is built once from cluster configuration and only ever mutated to
attach (and later detach) its tunnel socket path and bound Docker client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from kubeferry.models.enums import HostRole

if TYPE_CHECKING:
    from kubeferry.docker.client import RemoteDockerClient


@dataclass(eq=False)
class Host:
    """
    Identity and connection facts for one machine.

    Attributes:
        address: Address used to reach the machine over SSH.
        internal_address: Cluster-facing address (defaults to ``address``).
        hostname: Logical hostname (defaults to ``address``).
        user: SSH user.
        roles: Roles assigned to this host.
        ssh_port: SSH port (defaults to the cluster one).
        ssh_key_path: Private key for this host; falls back to the cluster key.
        sudo: Prefix remote shell commands with ``sudo``.
        docker_socket: Remote Docker engine socket (defaults to the cluster one).
        socket_path: Local tunnel socket, set while the tunnel is up.
        docker_client: Docker client bound to the tunnel, set while it is up.
    """

    address: str
    user: str = "root"
    internal_address: str = ""
    hostname: str = ""
    roles: list[HostRole] = field(default_factory=list)
    ssh_port: int | None = None
    ssh_key_path: str | None = None
    sudo: bool = False
    docker_socket: str = ""

    socket_path: str | None = field(default=None, repr=False)
    docker_client: RemoteDockerClient | None = field(default=None, repr=False)

    def __post_init__(self):
        if not self.internal_address:
            self.internal_address = self.address
        if not self.hostname:
            self.hostname = self.address
        self.roles = [HostRole(role) for role in self.roles]

    def has_role(self, role: HostRole | str) -> bool:
        """Check whether this host carries the given role."""
        return HostRole(role) in self.roles

    @property
    def etcd_member_name(self) -> str:
        """Name of this host's etcd member."""
        return f"etcd-{self.hostname}"

    def detach(self) -> None:
        """Forget the tunnel attachments."""
        self.socket_path = None
        self.docker_client = None


# =============================================================================
# Host Set Helpers
# =============================================================================


def divide_hosts(hosts: list[Host]) -> tuple[list[Host], list[Host], list[Host]]:
    """
    Split hosts into planes by role.

    Order inside each plane follows the input order, which is what makes the
    etcd peer list deterministic.

    Returns:
        Tuple of (etcd_hosts, controlplane_hosts, worker_hosts).
    """
    etcd_hosts = [h for h in hosts if h.has_role(HostRole.ETCD)]
    cp_hosts = [h for h in hosts if h.has_role(HostRole.CONTROLPLANE)]
    worker_hosts = [h for h in hosts if h.has_role(HostRole.WORKER)]
    return etcd_hosts, cp_hosts, worker_hosts


def unique_hosts(*host_lists: list[Host]) -> list[Host]:
    """Merge host lists, keeping the first occurrence of each address."""
    seen: set[str] = set()
    merged: list[Host] = []
    for host_list in host_lists:
        for host in host_list:
            if host.address in seen:
                continue
            seen.add(host.address)
            merged.append(host)
    return merged
