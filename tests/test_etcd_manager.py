"""Tests for EtcdClusterManager.

Comprehensive tests for:
- Snapshot: all hosts in order, abort with host attribution
- Checksum verification: fail closed, commutative over host order
- Restore: refused without mutation on divergent checksums, peer list per host
- Reconcile: state machine and idempotence
- Etcd plane bring-up
- Bounded-concurrency fan-out and timeouts
"""

import asyncio
import itertools

import pytest

from fakes import FakeConnector, running_etcd, stopped_old_etcd
from kubeferry.docker.naming import (
    ETCD_CHECKSUM_CONTAINER_NAME,
    ETCD_CONTAINER_NAME,
    ETCD_RESTORE_CONTAINER_NAME,
    ETCD_SNAPSHOT_CONTAINER_NAME,
)
from kubeferry.etcd.exceptions import HostOperationError, SnapshotInconsistentError
from kubeferry.etcd.manager import EtcdClusterManager, checksums_consistent
from kubeferry.hosts.exceptions import SSHConnectionError
from kubeferry.models.enums import ContainerStatus, ReconcileAction

PEERS = (
    "etcd-A=https://10.0.0.1:2380,"
    "etcd-B=https://10.0.0.2:2380,"
    "etcd-C=https://10.0.0.3:2380"
)


@pytest.fixture
def manager(etcd_hosts, identity, connector, settings):
    return EtcdClusterManager(etcd_hosts, identity, connector, settings=settings)


# =============================================================================
# Snapshot
# =============================================================================


class TestSnapshot:
    """Tests for snapshot."""

    @pytest.mark.asyncio
    async def test_snapshot_all_hosts_in_order(self, manager, connector):
        await manager.snapshot("pre-upgrade")

        assert connector.connected == ["A", "B", "C"]
        for client in connector.clients.values():
            specs = client.helper_specs(ETCD_SNAPSHOT_CONTAINER_NAME)
            assert len(specs) == 1
            assert specs[0].command[-1] == "/var/lib/etcd/snapshots/pre-upgrade"

    @pytest.mark.asyncio
    async def test_snapshot_aborts_on_first_failure(self, manager, connector):
        """A failing host stops the fan-out and is named in the error."""
        connector.clients["B"].failing_helpers.add(ETCD_SNAPSHOT_CONTAINER_NAME)

        with pytest.raises(HostOperationError) as exc_info:
            await manager.snapshot("pre-upgrade")

        assert exc_info.value.hostname == "B"
        assert exc_info.value.operation == "snapshot"
        assert "B" in str(exc_info.value)
        assert connector.clients["C"].calls == []

    @pytest.mark.asyncio
    async def test_snapshot_unreachable_host(self, manager, connector):
        connector.unreachable.add("A")

        with pytest.raises(HostOperationError) as exc_info:
            await manager.snapshot("pre-upgrade")

        assert exc_info.value.hostname == "A"
        assert isinstance(exc_info.value.cause, SSHConnectionError)
        assert connector.connected == ["A"]


# =============================================================================
# Checksum Verification
# =============================================================================


class TestChecksumVerification:
    """Tests for checksum collection and verification."""

    def test_consistency_rule(self):
        assert checksums_consistent(["a", "a", "a"])
        assert not checksums_consistent(["a", "b", "a"])
        assert not checksums_consistent([])

    @pytest.mark.asyncio
    async def test_collect(self, manager, connector):
        connector.clients["B"].checksum = "xyz999"
        assert await manager.collect_snapshot_checksums("pre-upgrade") == {
            "A": "abc123",
            "B": "xyz999",
            "C": "abc123",
        }

    @pytest.mark.asyncio
    async def test_identical_checksums_verify(self, manager):
        assert await manager.verify_snapshot_checksums("pre-upgrade") is True

    @pytest.mark.asyncio
    async def test_divergent_checksum_fails(self, manager, connector):
        connector.clients["B"].checksum = "xyz999"
        assert await manager.verify_snapshot_checksums("pre-upgrade") is False

    @pytest.mark.asyncio
    async def test_missing_snapshot_fails_closed(self, manager, connector):
        """A host that cannot checksum fails the whole verification without raising."""
        connector.clients["C"].checksum = None
        assert await manager.verify_snapshot_checksums("pre-upgrade") is False

    @pytest.mark.asyncio
    async def test_unreachable_host_fails_closed(self, manager, connector):
        connector.unreachable.add("B")
        assert await manager.verify_snapshot_checksums("pre-upgrade") is False

    @pytest.mark.asyncio
    async def test_no_hosts_fails(self, identity, settings):
        manager = EtcdClusterManager([], identity, FakeConnector([]), settings=settings)
        assert await manager.verify_snapshot_checksums("pre-upgrade") is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("odd_one", [None, "A", "B", "C"])
    async def test_verdict_commutes_over_host_order(self, etcd_hosts, identity, settings, odd_one):
        """Permuting the host list never changes the verdict."""
        verdicts = set()
        for order in itertools.permutations(etcd_hosts):
            connector = FakeConnector(list(order))
            if odd_one:
                connector.clients[odd_one].checksum = "xyz999"
            manager = EtcdClusterManager(list(order), identity, connector, settings=settings)
            verdicts.add(await manager.verify_snapshot_checksums("pre-upgrade"))

        assert verdicts == {odd_one is None}


# =============================================================================
# Restore
# =============================================================================


class TestRestore:
    """Tests for restore."""

    @pytest.mark.asyncio
    async def test_restore_with_identical_checksums(self, manager, connector):
        """Every host is restored with the full, ordered peer list."""
        await manager.restore("pre-upgrade")

        for hostname, client in connector.clients.items():
            specs = client.helper_specs(ETCD_RESTORE_CONTAINER_NAME)
            assert len(specs) == 1
            assert f"--initial-cluster={PEERS}" in specs[0].command
            assert f"--name=etcd-{hostname}" in specs[0].command
            assert "/var/lib/etcd/snapshots/pre-upgrade" in specs[0].command

    @pytest.mark.asyncio
    async def test_checksums_collected_before_any_restore(self, manager, connector):
        await manager.restore("pre-upgrade")

        for client in connector.clients.values():
            names = [spec.name for spec in client.helper_specs()]
            assert names.index(ETCD_CHECKSUM_CONTAINER_NAME) < names.index(
                ETCD_RESTORE_CONTAINER_NAME
            )

    @pytest.mark.asyncio
    async def test_divergent_checksum_refuses_restore(self, manager, connector):
        """One divergent copy blocks restore with no mutation on any host."""
        connector.clients["B"].checksum = "xyz999"

        with pytest.raises(SnapshotInconsistentError) as exc_info:
            await manager.restore("pre-upgrade")

        assert exc_info.value.checksums == {"A": "abc123", "B": "xyz999", "C": "abc123"}
        assert "xyz999" in str(exc_info.value)
        assert "abc123" in str(exc_info.value)
        assert connector.mutations() == {"A": [], "B": [], "C": []}

    @pytest.mark.asyncio
    async def test_missing_checksum_refuses_restore(self, manager, connector):
        connector.clients["A"].checksum = None

        with pytest.raises(SnapshotInconsistentError) as exc_info:
            await manager.restore("pre-upgrade")

        assert isinstance(exc_info.value.cause, HostOperationError)
        assert connector.mutations() == {"A": [], "B": [], "C": []}

    @pytest.mark.asyncio
    async def test_running_etcd_stopped_and_restarted(self, manager, connector):
        client = connector.clients["A"]
        client.containers.update(running_etcd())

        await manager.restore("pre-upgrade")

        ops = [c[0] for c in client.mutations if c[0] in ("stop", "start")]
        assert ops == ["stop", "start"]
        assert client.containers[ETCD_CONTAINER_NAME] == ContainerStatus.RUNNING

    @pytest.mark.asyncio
    async def test_restore_failure_names_host(self, manager, connector):
        connector.clients["C"].failing_helpers.add(ETCD_RESTORE_CONTAINER_NAME)

        with pytest.raises(HostOperationError) as exc_info:
            await manager.restore("pre-upgrade")

        assert exc_info.value.hostname == "C"
        assert exc_info.value.operation == "restore"


# =============================================================================
# Reconcile
# =============================================================================


class TestReconcile:
    """Tests for reconcile."""

    @pytest.mark.asyncio
    async def test_old_etcd_renamed_and_started(self, manager, connector):
        """Absent primary plus stopped old-etcd is renamed back and started."""
        connector.clients["A"].containers.update(stopped_old_etcd())
        connector.clients["B"].containers.update(running_etcd())
        connector.clients["C"].containers.update(running_etcd())

        actions = await manager.reconcile()

        assert actions == {
            "A": ReconcileAction.RENAMED_AND_STARTED,
            "B": ReconcileAction.NONE,
            "C": ReconcileAction.NONE,
        }
        assert connector.clients["A"].mutations == [
            ("rename", "old-etcd", "etcd"),
            ("start", "etcd"),
        ]
        assert connector.clients["B"].mutations == []
        assert connector.clients["C"].mutations == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [ContainerStatus.EXITED, ContainerStatus.DEAD])
    async def test_stopped_primary_started(self, manager, connector, status):
        connector.clients["B"].containers[ETCD_CONTAINER_NAME] = status

        actions = await manager.reconcile()

        assert actions["B"] == ReconcileAction.STARTED
        assert connector.clients["B"].mutations == [("start", "etcd")]

    @pytest.mark.asyncio
    async def test_both_absent_is_noop(self, manager, connector):
        actions = await manager.reconcile()
        assert set(actions.values()) == {ReconcileAction.NONE}
        assert connector.mutations() == {"A": [], "B": [], "C": []}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status", [ContainerStatus.CREATED, ContainerStatus.EXITED, ContainerStatus.DEAD]
    )
    async def test_inactive_old_etcd_recovered(self, manager, connector, status):
        """Any old-etcd that is not up (including never started) is renamed back."""
        connector.clients["A"].containers["old-etcd"] = status
        connector.clients["B"].containers.update(running_etcd())
        connector.clients["C"].containers.update(running_etcd())

        actions = await manager.reconcile()

        assert actions["A"] == ReconcileAction.RENAMED_AND_STARTED
        assert connector.clients["A"].mutations == [
            ("rename", "old-etcd", "etcd"),
            ("start", "etcd"),
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status",
        [
            ContainerStatus.RUNNING,
            ContainerStatus.RESTARTING,
            ContainerStatus.PAUSED,
            ContainerStatus.REMOVING,
        ],
    )
    async def test_active_old_etcd_left_alone(self, manager, connector, status):
        connector.clients["A"].containers["old-etcd"] = status
        actions = await manager.reconcile()
        assert actions["A"] == ReconcileAction.NONE
        assert connector.clients["A"].mutations == []

    @pytest.mark.asyncio
    async def test_idempotent(self, manager, connector):
        """A second run right after the first makes no mutations."""
        connector.clients["A"].containers.update(stopped_old_etcd())
        connector.clients["C"].containers[ETCD_CONTAINER_NAME] = ContainerStatus.EXITED

        await manager.reconcile()
        before = {name: len(c.mutations) for name, c in connector.clients.items()}
        second = await manager.reconcile()
        after = {name: len(c.mutations) for name, c in connector.clients.items()}

        assert before == after
        assert set(second.values()) == {ReconcileAction.NONE}

    @pytest.mark.asyncio
    async def test_inspect_error_fails_reconcile(self, manager, connector):
        """Inspection errors other than not-found abort and name the host."""
        connector.clients["B"].inspect_error = "engine exploded"

        with pytest.raises(HostOperationError) as exc_info:
            await manager.reconcile()

        assert exc_info.value.hostname == "B"
        assert connector.clients["C"].calls == []


# =============================================================================
# Etcd Plane
# =============================================================================


class TestRunEtcdPlane:
    """Tests for run_etcd_plane."""

    @pytest.mark.asyncio
    async def test_existing_host_skipped_rest_started(self, manager, connector):
        """A host already running etcd is skipped without stopping the loop."""
        connector.clients["A"].containers.update(running_etcd())

        await manager.run_etcd_plane()

        assert connector.clients["A"].mutations == []
        for name in ("B", "C"):
            ops = [c[0] for c in connector.clients[name].mutations]
            assert ops == ["pull_image", "run_detached"]
            spec = connector.clients[name].mutations[1][1]
            assert f"--initial-cluster={PEERS}" in spec.command


# =============================================================================
# Fan-out
# =============================================================================


class TestFanOut:
    """Tests for bounded concurrency and deadlines."""

    @pytest.mark.asyncio
    async def test_concurrent_fan_out_reports_one_host(self, manager, connector, settings):
        settings.HOST_CONCURRENCY = 3
        connector.unreachable.add("B")

        with pytest.raises(HostOperationError) as exc_info:
            await manager.snapshot("pre-upgrade")

        assert exc_info.value.hostname == "B"

    @pytest.mark.asyncio
    async def test_concurrent_results_keep_host_order(self, manager, settings):
        settings.HOST_CONCURRENCY = 2
        checksums = await manager.collect_snapshot_checksums("pre-upgrade")
        assert list(checksums) == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, etcd_hosts, identity, settings):
        settings.HOST_CONCURRENCY = 2
        connector = FakeConnector(etcd_hosts)
        in_flight = 0
        peak = 0
        original = connector.connect

        async def slow_connect(host):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.02)
            in_flight -= 1
            return await original(host)

        connector.connect = slow_connect
        manager = EtcdClusterManager(etcd_hosts, identity, connector, settings=settings)
        await manager.snapshot("pre-upgrade")
        assert peak == 2

    @pytest.mark.asyncio
    async def test_timeout_stops_fan_out(self, manager, connector):
        """An expired deadline cancels the running host and starts no other."""
        original = connector.connect

        async def hang_on_b(host):
            if host.hostname == "B":
                await asyncio.sleep(10)
            return await original(host)

        connector.connect = hang_on_b

        with pytest.raises(asyncio.TimeoutError):
            await manager.reconcile(timeout=0.1)

        assert connector.clients["C"].calls == []
