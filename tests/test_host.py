"""Tests for the host model, host-set helpers, config paths and etcd cluster strings."""

import pytest

from fakes import make_host
from kubeferry.config import ClusterConfig
from kubeferry.etcd.commands import (
    etcd_connection_string,
    etcd_initial_cluster,
    etcd_service_spec,
    parse_checksum,
    snapshot_checksum_spec,
    snapshot_restore_spec,
    snapshot_save_spec,
)
from kubeferry.models.enums import ContainerStatus, HostRole
from kubeferry.models.host import Host, divide_hosts, unique_hosts
from kubeferry.models.responses import EtcdHealthResponse


# =============================================================================
# Host Model
# =============================================================================


class TestHost:
    """Tests for Host."""

    def test_defaults_from_address(self):
        host = Host(address="192.168.1.10")
        assert host.internal_address == "192.168.1.10"
        assert host.hostname == "192.168.1.10"
        assert host.user == "root"
        assert host.socket_path is None

    def test_roles_coerced(self):
        host = Host(address="h", roles=["etcd", "worker"])
        assert host.roles == [HostRole.ETCD, HostRole.WORKER]
        assert host.has_role("etcd")
        assert not host.has_role(HostRole.CONTROLPLANE)

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError):
            Host(address="h", roles=["master"])

    def test_etcd_member_name(self):
        assert make_host("A", "10.0.0.1").etcd_member_name == "etcd-A"

    def test_detach(self):
        host = make_host("A", "10.0.0.1")
        host.socket_path = "/tmp/x.sock"
        host.detach()
        assert host.socket_path is None
        assert host.docker_client is None


class TestHostSets:
    """Tests for divide_hosts and unique_hosts."""

    def test_divide_preserves_order(self):
        a = make_host("A", "10.0.0.1", roles=(HostRole.ETCD, HostRole.CONTROLPLANE))
        b = make_host("B", "10.0.0.2", roles=(HostRole.WORKER,))
        c = make_host("C", "10.0.0.3", roles=(HostRole.ETCD, HostRole.WORKER))

        etcd, cp, workers = divide_hosts([a, b, c])

        assert etcd == [a, c]
        assert cp == [a]
        assert workers == [b, c]

    def test_unique_hosts(self):
        a = make_host("A", "10.0.0.1")
        b = make_host("B", "10.0.0.2")
        assert unique_hosts([a, b], [b, a]) == [a, b]


# =============================================================================
# Configuration
# =============================================================================


class TestClusterConfig:
    """Tests for ClusterConfig path helpers."""

    def test_socket_path(self, tmp_path):
        settings = ClusterConfig(SOCKETS_DIR=str(tmp_path))
        assert settings.get_socket_path("node1") == f"{tmp_path}/docker-node1.sock"

    def test_relative_sockets_dir_is_absolute(self):
        assert ClusterConfig().get_sockets_dir().endswith("/.sockets")
        assert ClusterConfig().get_sockets_dir().startswith("/")

    def test_key_override(self):
        settings = ClusterConfig(SSH_KEY_PATH="/keys/default")
        assert settings.get_ssh_key_path() == "/keys/default"
        assert settings.get_ssh_key_path("/keys/host") == "/keys/host"

    def test_no_default_key(self, monkeypatch):
        monkeypatch.setenv("HOME", "/home/operator")
        assert ClusterConfig().get_ssh_key_path() is None
        assert ClusterConfig(SSH_KEY_PATH="~/k").get_ssh_key_path() == "~/k"

    def test_snapshot_and_cert_paths(self):
        settings = ClusterConfig(ETCD_SNAPSHOT_DIR="/data/snap/", CERT_DIR="/pki")
        assert settings.get_snapshot_path("pre-upgrade") == "/data/snap/pre-upgrade"
        assert settings.get_cert_path("kube-ca.pem") == "/pki/kube-ca.pem"


# =============================================================================
# Cluster Strings
# =============================================================================


class TestClusterStrings:
    """Tests for the etcd peer list and connection string."""

    def test_initial_cluster(self, etcd_hosts):
        assert etcd_initial_cluster(etcd_hosts, ClusterConfig()) == (
            "etcd-A=https://10.0.0.1:2380,"
            "etcd-B=https://10.0.0.2:2380,"
            "etcd-C=https://10.0.0.3:2380"
        )

    def test_initial_cluster_follows_host_order(self, etcd_hosts):
        reordered = etcd_initial_cluster(list(reversed(etcd_hosts)), ClusterConfig())
        assert reordered.startswith("etcd-C=")

    def test_connection_string(self, etcd_hosts):
        assert etcd_connection_string(etcd_hosts, ClusterConfig()) == (
            "https://10.0.0.1:2379,https://10.0.0.2:2379,https://10.0.0.3:2379"
        )


class TestContainerSpecs:
    """Tests for etcd container spec builders."""

    def test_service_spec(self, etcd_hosts):
        settings = ClusterConfig()
        spec = etcd_service_spec(etcd_hosts[1], etcd_hosts, settings)
        assert spec.name == "etcd"
        assert spec.network_mode == "host"
        assert "--name=etcd-B" in spec.command
        assert "--initial-advertise-peer-urls=https://10.0.0.2:2380" in spec.command
        assert f"--initial-cluster={etcd_initial_cluster(etcd_hosts, settings)}" in spec.command
        assert spec.docker_volumes()[settings.CERT_DIR] == {"bind": settings.CERT_DIR, "mode": "ro"}

    def test_snapshot_save_spec(self):
        spec = snapshot_save_spec("pre-upgrade", ClusterConfig())
        assert spec.command[-3:] == ["snapshot", "save", "/var/lib/etcd/snapshots/pre-upgrade"]
        assert spec.environment == {"ETCDCTL_API": "3"}

    def test_checksum_spec(self):
        spec = snapshot_checksum_spec("pre-upgrade", ClusterConfig())
        assert spec.command == ["md5sum", "/var/lib/etcd/snapshots/pre-upgrade"]
        assert spec.image == ClusterConfig().ALPINE_IMAGE

    def test_restore_spec(self, etcd_hosts):
        settings = ClusterConfig()
        peers = etcd_initial_cluster(etcd_hosts, settings)
        spec = snapshot_restore_spec("pre-upgrade", etcd_hosts[0], peers, settings)
        assert spec.command[:4] == [
            "etcdctl",
            "snapshot",
            "restore",
            "/var/lib/etcd/snapshots/pre-upgrade",
        ]
        assert f"--initial-cluster={peers}" in spec.command
        assert "--name=etcd-A" in spec.command

    def test_parse_checksum(self):
        assert parse_checksum("abc123  /var/lib/etcd/snapshots/x\n") == "abc123"
        with pytest.raises(ValueError):
            parse_checksum("   \n")


# =============================================================================
# Enums and Responses
# =============================================================================


class TestModels:
    def test_stopped_statuses(self):
        assert ContainerStatus.EXITED.is_stopped
        assert ContainerStatus.DEAD.is_stopped
        assert not ContainerStatus.RUNNING.is_stopped
        assert not ContainerStatus.CREATED.is_stopped

    def test_active_statuses(self):
        assert ContainerStatus.RESTARTING.is_active
        assert ContainerStatus.PAUSED.is_active
        assert not ContainerStatus.CREATED.is_active
        assert not ContainerStatus.EXITED.is_active

    @pytest.mark.parametrize(
        "body,healthy",
        [
            ('{"health": "true"}', True),
            ('{"Health": "true"}', True),
            ('{"health": "false", "reason": "RAFT NO LEADER"}', False),
            ('{"Health": "TRUE"}', False),
            ("{}", False),
        ],
    )
    def test_health_response(self, body, healthy):
        assert EtcdHealthResponse.model_validate_json(body).is_healthy is healthy
