"""
Etcd command construction.

Builds the peer list, connection string and the container specs for the
etcd service container and the run-once helpers (snapshot save, checksum,
restore). Nothing here touches a host.

Host paths are mounted at the same path inside every container, so a path
in a command line means the same file on the host and in the container.
"""

import shlex

from kubeferry.config import ClusterConfig
from kubeferry.docker.client import ContainerSpec
from kubeferry.docker.naming import (
    ETCD_CHECKSUM_CONTAINER_NAME,
    ETCD_CONTAINER_NAME,
    ETCD_RESTORE_CONTAINER_NAME,
    ETCD_RESTORE_FILES_CONTAINER_NAME,
    ETCD_SNAPSHOT_CONTAINER_NAME,
    make_labels,
)
from kubeferry.models.enums import HostRole
from kubeferry.models.host import Host
from kubeferry.pki.certs import CA_CERT_NAME, ETCD_CERT_NAME


# =============================================================================
# Cluster Strings
# =============================================================================


def etcd_peer_url(host: Host, settings: ClusterConfig) -> str:
    return f"https://{host.internal_address}:{settings.ETCD_PEER_PORT}"


def etcd_client_url(host: Host, settings: ClusterConfig) -> str:
    return f"https://{host.internal_address}:{settings.ETCD_CLIENT_PORT}"


def etcd_initial_cluster(hosts: list[Host], settings: ClusterConfig) -> str:
    """
    Bootstrap peer list, e.g. ``etcd-a=https://10.0.0.1:2380,...``.

    Order follows ``hosts`` and ends up in etcd's persisted cluster metadata,
    so callers must always pass the canonical etcd host order.
    """
    return ",".join(f"{h.etcd_member_name}={etcd_peer_url(h, settings)}" for h in hosts)


def etcd_connection_string(hosts: list[Host], settings: ClusterConfig) -> str:
    """Client endpoints for components that talk to etcd (kube-apiserver)."""
    return ",".join(etcd_client_url(h, settings) for h in hosts)


def _tls_paths(settings: ClusterConfig) -> tuple[str, str, str]:
    return (
        settings.get_cert_path(f"{CA_CERT_NAME}.pem"),
        settings.get_cert_path(f"{ETCD_CERT_NAME}.pem"),
        settings.get_cert_path(f"{ETCD_CERT_NAME}-key.pem"),
    )


def _etcdctl_tls_args(settings: ClusterConfig) -> list[str]:
    ca, cert, key = _tls_paths(settings)
    return [f"--cacert={ca}", f"--cert={cert}", f"--key={key}"]


# =============================================================================
# Service Container
# =============================================================================


def etcd_service_spec(host: Host, etcd_hosts: list[Host], settings: ClusterConfig) -> ContainerSpec:
    """The long-running TLS-enabled etcd member for one host."""
    ca, cert, key = _tls_paths(settings)
    command = [
        "/usr/local/bin/etcd",
        f"--name={host.etcd_member_name}",
        f"--data-dir={settings.ETCD_DATA_DIR}",
        f"--advertise-client-urls={etcd_client_url(host, settings)}",
        f"--listen-client-urls=https://0.0.0.0:{settings.ETCD_CLIENT_PORT}",
        f"--initial-advertise-peer-urls={etcd_peer_url(host, settings)}",
        f"--listen-peer-urls=https://0.0.0.0:{settings.ETCD_PEER_PORT}",
        f"--initial-cluster-token={settings.ETCD_CLUSTER_TOKEN}",
        f"--initial-cluster={etcd_initial_cluster(etcd_hosts, settings)}",
        "--initial-cluster-state=new",
        "--client-cert-auth",
        f"--trusted-ca-file={ca}",
        f"--cert-file={cert}",
        f"--key-file={key}",
        "--peer-client-cert-auth",
        f"--peer-trusted-ca-file={ca}",
        f"--peer-cert-file={cert}",
        f"--peer-key-file={key}",
    ]
    return ContainerSpec(
        name=ETCD_CONTAINER_NAME,
        image=settings.ETCD_IMAGE,
        command=command,
        volumes={
            settings.ETCD_DATA_DIR: settings.ETCD_DATA_DIR,
            settings.CERT_DIR: f"{settings.CERT_DIR}:ro",
        },
        labels=make_labels(HostRole.ETCD.value),
    )


# =============================================================================
# Helper Containers
# =============================================================================


def snapshot_save_spec(name: str, settings: ClusterConfig) -> ContainerSpec:
    """Helper that saves a snapshot of the local member into the snapshot dir."""
    command = [
        "etcdctl",
        f"--endpoints=https://127.0.0.1:{settings.ETCD_CLIENT_PORT}",
        *_etcdctl_tls_args(settings),
        "snapshot",
        "save",
        settings.get_snapshot_path(name),
    ]
    return ContainerSpec(
        name=ETCD_SNAPSHOT_CONTAINER_NAME,
        image=settings.ETCD_IMAGE,
        command=command,
        volumes={
            settings.ETCD_SNAPSHOT_DIR: settings.ETCD_SNAPSHOT_DIR,
            settings.CERT_DIR: f"{settings.CERT_DIR}:ro",
        },
        environment={"ETCDCTL_API": "3"},
        labels=make_labels(HostRole.ETCD.value),
    )


def snapshot_checksum_spec(name: str, settings: ClusterConfig) -> ContainerSpec:
    """Helper that prints the md5 checksum of a snapshot file."""
    return ContainerSpec(
        name=ETCD_CHECKSUM_CONTAINER_NAME,
        image=settings.ALPINE_IMAGE,
        command=["md5sum", settings.get_snapshot_path(name)],
        volumes={settings.ETCD_SNAPSHOT_DIR: f"{settings.ETCD_SNAPSHOT_DIR}:ro"},
        network_mode=None,
        labels=make_labels(HostRole.ETCD.value),
    )


def parse_checksum(output: str) -> str:
    """
    Checksum from ``md5sum`` output (``<hex>  <path>``).

    Raises:
        ValueError: If the output holds no checksum.
    """
    fields = output.split()
    if not fields:
        raise ValueError("empty checksum output")
    return fields[0]


def restore_dir(settings: ClusterConfig) -> str:
    return f"{settings.ETCD_DATA_DIR.rstrip('/')}/restore"


def restore_cleanup_spec(settings: ClusterConfig) -> ContainerSpec:
    """Helper that removes a leftover restore directory."""
    return ContainerSpec(
        name=ETCD_RESTORE_FILES_CONTAINER_NAME,
        image=settings.ALPINE_IMAGE,
        command=["rm", "-rf", restore_dir(settings)],
        volumes={settings.ETCD_DATA_DIR: settings.ETCD_DATA_DIR},
        network_mode=None,
        labels=make_labels(HostRole.ETCD.value),
    )


def snapshot_restore_spec(
    name: str,
    host: Host,
    initial_cluster: str,
    settings: ClusterConfig,
) -> ContainerSpec:
    """
    Helper that restores a snapshot into a fresh data directory.

    Every host gets the same ``initial_cluster`` so all replicas bootstrap
    with identical membership.
    """
    command = [
        "etcdctl",
        "snapshot",
        "restore",
        settings.get_snapshot_path(name),
        f"--data-dir={restore_dir(settings)}",
        f"--name={host.etcd_member_name}",
        f"--initial-cluster={initial_cluster}",
        f"--initial-cluster-token={settings.ETCD_CLUSTER_TOKEN}",
        f"--initial-advertise-peer-urls={etcd_peer_url(host, settings)}",
    ]
    return ContainerSpec(
        name=ETCD_RESTORE_CONTAINER_NAME,
        image=settings.ETCD_IMAGE,
        command=command,
        volumes={settings.ETCD_DATA_DIR: settings.ETCD_DATA_DIR},
        environment={"ETCDCTL_API": "3"},
        network_mode=None,
        labels=make_labels(HostRole.ETCD.value),
    )


def restore_swap_spec(settings: ClusterConfig) -> ContainerSpec:
    """Helper that replaces the member directory with the restored one."""
    data_dir = settings.ETCD_DATA_DIR.rstrip("/")
    member = shlex.quote(f"{data_dir}/member")
    restored = shlex.quote(restore_dir(settings))
    script = f"rm -rf {member} && mv {restored}/member {member} && rm -rf {restored}"
    return ContainerSpec(
        name=ETCD_RESTORE_FILES_CONTAINER_NAME,
        image=settings.ALPINE_IMAGE,
        command=["sh", "-c", script],
        volumes={settings.ETCD_DATA_DIR: settings.ETCD_DATA_DIR},
        network_mode=None,
        labels=make_labels(HostRole.ETCD.value),
    )
