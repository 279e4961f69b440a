"""
Etcd Cluster Manager.

Coordinates snapshot, checksum verification, restore, health checks,
reconciliation and bring-up across the ordered set of etcd hosts.

Every multi-host operation goes through ``_for_each_host``: hosts are
visited in order (or with bounded concurrency when ``HOST_CONCURRENCY`` is
above 1), and the first host-level failure aborts the operation with a
HostOperationError naming that host. All public operations accept an
optional ``timeout``; when it expires, in-flight remote calls are cancelled
and no further hosts are started.
"""

import asyncio
import ssl
from functools import partial
from typing import Any, Awaitable, Callable

import httpx

from kubeferry.config import ClusterConfig, config
from kubeferry.docker.client import ContainerSpec, HelperResult, RemoteDockerClient
from kubeferry.docker.exceptions import DockerError, HelperContainerError
from kubeferry.docker.naming import ETCD_CONTAINER_NAME, old_container_name
from kubeferry.etcd.commands import (
    etcd_connection_string,
    etcd_initial_cluster,
    etcd_service_spec,
    parse_checksum,
    restore_cleanup_spec,
    restore_swap_spec,
    snapshot_checksum_spec,
    snapshot_restore_spec,
    snapshot_save_spec,
)
from kubeferry.etcd.exceptions import HostOperationError, SnapshotInconsistentError
from kubeferry.etcd.health import Sleep, check_etcd_health
from kubeferry.hosts.dialer import DialerFactory
from kubeferry.hosts.exceptions import ConnectivityError, HostError
from kubeferry.hosts.tunnel import HostConnector
from kubeferry.models.enums import ReconcileAction
from kubeferry.models.host import Host
from kubeferry.pki.certs import EtcdClientIdentity
from kubeferry.utils.logger import format_traceback, get_logger

logger = get_logger(__name__)

HostOperation = Callable[[Host], Awaitable[Any]]


def checksums_consistent(checksums: list[str]) -> bool:
    """True iff there is at least one checksum and all equal the first."""
    if not checksums:
        return False
    first = checksums[0]
    return all(checksum == first for checksum in checksums)


class EtcdClusterManager:
    """
    Lifecycle operations over one cluster's etcd hosts.

    Attributes:
        etcd_hosts: Etcd hosts in canonical order (drives the peer list).
        identity: Client certificate/key presented to etcd.
        connector: Brings hosts up and returns their Docker clients.
        dialer_factory: Resolves a host to its dialer for HTTPS calls.
        settings: Cluster configuration.
    """

    def __init__(
        self,
        etcd_hosts: list[Host],
        identity: EtcdClientIdentity,
        connector: HostConnector,
        dialer_factory: DialerFactory | None = None,
        settings: ClusterConfig | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Args:
            etcd_hosts: Etcd hosts in canonical order.
            identity: Etcd client identity.
            connector: HostTunnelPool, DirectHostConnector or a test double.
            dialer_factory: Overrides ``connector.dialer_factory``.
            settings: Cluster configuration (defaults to the global one).
            http_transport: httpx transport replacing the dialed connection
                for health checks (tests).
            sleep: Sleep used between health check attempts.
        """
        self.etcd_hosts = list(etcd_hosts)
        self.identity = identity
        self.connector = connector
        self.dialer_factory = dialer_factory or connector.dialer_factory
        self.settings = settings or config
        self._http_transport = http_transport
        self._sleep = sleep
        self._ssl_context: ssl.SSLContext | None = None

    @property
    def initial_cluster(self) -> str:
        return etcd_initial_cluster(self.etcd_hosts, self.settings)

    @property
    def connection_string(self) -> str:
        return etcd_connection_string(self.etcd_hosts, self.settings)

    def ssl_context(self) -> ssl.SSLContext:
        if self._ssl_context is None:
            self._ssl_context = self.identity.ssl_context()
        return self._ssl_context

    # =========================================================================
    # Fan-out
    # =========================================================================

    async def _run_on_host(self, operation: str, host: Host, func: HostOperation) -> Any:
        try:
            return await func(host)
        except (HostError, DockerError) as e:
            logger.error(f"[etcd] {operation} failed on host [{host.hostname}]: {e}")
            logger.debug(format_traceback(e))
            raise HostOperationError(operation, host.hostname, e) from e

    async def _for_each_host(self, operation: str, func: HostOperation) -> dict[str, Any]:
        """
        Run ``func`` for every etcd host and collect results by hostname.

        Raises:
            HostOperationError: For the first host that failed. With
                concurrency above 1, hosts still running are cancelled and
                the earliest failed host in host order is reported.
        """
        limit = max(1, self.settings.HOST_CONCURRENCY)
        if limit == 1:
            results = {}
            for host in self.etcd_hosts:
                results[host.hostname] = await self._run_on_host(operation, host, func)
            return results

        semaphore = asyncio.Semaphore(limit)

        async def bounded(host: Host) -> Any:
            async with semaphore:
                return await self._run_on_host(operation, host, func)

        tasks = [asyncio.create_task(bounded(host)) for host in self.etcd_hosts]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in tasks:
                if task.done() and not task.cancelled() and task.exception() is not None:
                    raise task.exception()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        return {host.hostname: task.result() for host, task in zip(self.etcd_hosts, tasks)}

    async def _with_timeout(self, coro: Awaitable[Any], timeout: float | None) -> Any:
        return await asyncio.wait_for(coro, timeout=timeout)

    async def _run_helper(
        self, client: RemoteDockerClient, host: Host, spec: ContainerSpec
    ) -> HelperResult:
        result = await client.run_once(spec)
        if result.exit_code != 0:
            reason = result.stderr.strip() or result.stdout.strip() or "no output"
            raise HelperContainerError(
                spec.name, host.hostname, f"exit code {result.exit_code}: {reason}", result.exit_code
            )
        return result

    # =========================================================================
    # Snapshot
    # =========================================================================

    async def snapshot(self, name: str, timeout: float | None = None) -> None:
        """
        Save snapshot ``name`` on every etcd host.

        Raises:
            HostOperationError: For the first host that could not snapshot.
        """
        logger.info(f"[etcd] Saving snapshot [{name}] on etcd hosts")
        await self._with_timeout(
            self._for_each_host("snapshot", partial(self._snapshot_host, name)), timeout
        )
        logger.info(f"[etcd] Snapshot [{name}] saved on {len(self.etcd_hosts)} hosts")

    async def _snapshot_host(self, name: str, host: Host) -> None:
        client = await self.connector.connect(host)
        await self._run_helper(client, host, snapshot_save_spec(name, self.settings))
        logger.info(f"[etcd] Saved snapshot [{name}] on host [{host.hostname}]")

    # =========================================================================
    # Checksum Verification
    # =========================================================================

    async def collect_snapshot_checksums(
        self, name: str, timeout: float | None = None
    ) -> dict[str, str]:
        """
        Checksum of snapshot ``name`` on every host, keyed by hostname.

        Raises:
            HostOperationError: For the first host whose checksum could not
                be computed (missing file, engine failure).
        """
        return await self._with_timeout(
            self._for_each_host("checksum", partial(self._checksum_host, name)), timeout
        )

    async def _checksum_host(self, name: str, host: Host) -> str:
        client = await self.connector.connect(host)
        spec = snapshot_checksum_spec(name, self.settings)
        result = await self._run_helper(client, host, spec)
        try:
            checksum = parse_checksum(result.stdout)
        except ValueError as e:
            raise HelperContainerError(spec.name, host.hostname, str(e)) from e
        logger.info(f"[etcd] Checksum of etcd snapshot on host [{host.hostname}] is [{checksum}]")
        return checksum

    async def _verify(self, name: str) -> tuple[bool, dict[str, str], HostOperationError | None]:
        logger.info(f"[etcd] Checking if all snapshots [{name}] are identical")
        try:
            checksums = await self.collect_snapshot_checksums(name)
        except HostOperationError as e:
            logger.warning(f"[etcd] Snapshot [{name}] verification failed: {e}")
            return False, {}, e
        return checksums_consistent(list(checksums.values())), checksums, None

    async def verify_snapshot_checksums(self, name: str, timeout: float | None = None) -> bool:
        """
        Whether every etcd host holds an identical copy of snapshot ``name``.

        Fails closed: any host whose checksum cannot be read makes the whole
        verification fail. Never raises for per-host failures.
        """
        consistent, checksums, _ = await self._with_timeout(self._verify(name), timeout)
        if checksums and not consistent:
            listed = ", ".join(f"{h}={c}" for h, c in checksums.items())
            logger.warning(f"[etcd] Snapshot [{name}] differs between hosts: {listed}")
        return consistent

    # =========================================================================
    # Restore
    # =========================================================================

    async def restore(self, name: str, timeout: float | None = None) -> None:
        """
        Restore snapshot ``name`` on every etcd host.

        Checksums are verified first; nothing on any host is touched unless
        every copy is identical. Each host is restored with the full peer
        list so all members bootstrap with the same membership.

        Raises:
            SnapshotInconsistentError: If verification fails.
            HostOperationError: For the first host whose restore failed.
        """
        await self._with_timeout(self._restore(name), timeout)

    async def _restore(self, name: str) -> None:
        consistent, checksums, error = await self._verify(name)
        if not consistent:
            raise SnapshotInconsistentError(name, checksums, error)

        initial_cluster = self.initial_cluster
        logger.info(f"[etcd] Restoring snapshot [{name}] with initial cluster [{initial_cluster}]")
        await self._for_each_host("restore", partial(self._restore_host, name, initial_cluster))
        logger.info(f"[etcd] Snapshot [{name}] restored on {len(self.etcd_hosts)} hosts")

    async def _restore_host(self, name: str, initial_cluster: str, host: Host) -> None:
        client = await self.connector.connect(host)

        state = await client.inspect(ETCD_CONTAINER_NAME)
        if state is not None and state.running:
            await client.stop(ETCD_CONTAINER_NAME)

        await self._run_helper(client, host, restore_cleanup_spec(self.settings))
        await self._run_helper(
            client, host, snapshot_restore_spec(name, host, initial_cluster, self.settings)
        )
        await self._run_helper(client, host, restore_swap_spec(self.settings))

        if state is not None:
            await client.start(ETCD_CONTAINER_NAME)
        logger.info(f"[etcd] Restored snapshot [{name}] on host [{host.hostname}]")

    # =========================================================================
    # Health
    # =========================================================================

    async def check_health(
        self,
        host: Host,
        retries: int | None = None,
        backoff: float | None = None,
        timeout: float | None = None,
    ) -> bool:
        """
        Whether the etcd member on ``host`` reports itself healthy.

        Unhealthy after all attempts, or an unreachable host, is a normal
        False result.
        """
        retries = self.settings.HEALTH_CHECK_RETRIES if retries is None else retries
        backoff = self.settings.HEALTH_CHECK_BACKOFF_SECONDS if backoff is None else backoff

        try:
            dial = self.dialer_factory(host)
        except ConnectivityError as e:
            logger.warning(f"[etcd] Failed to create a dialer for host [{host.hostname}]: {e}")
            return False

        return await self._with_timeout(
            check_etcd_health(
                host,
                dial,
                None if self._http_transport is not None else self.ssl_context(),
                self.settings,
                retries,
                backoff,
                transport=self._http_transport,
                sleep=self._sleep,
            ),
            timeout,
        )

    async def check_cluster_health(self, timeout: float | None = None) -> dict[str, bool]:
        """Health verdict for every etcd host, keyed by hostname."""
        return await self._with_timeout(
            self._for_each_host("health check", self.check_health), timeout
        )

    # =========================================================================
    # Reconcile
    # =========================================================================

    async def reconcile(self, timeout: float | None = None) -> dict[str, ReconcileAction]:
        """
        Bring stopped etcd containers back after crashes or interrupted upgrades.

        Per host:
            - ``etcd`` running: nothing.
            - ``etcd`` exited or dead: start it.
            - ``etcd`` absent, ``old-etcd`` not active (created, exited, dead):
              rename it back and start it.
            - both absent: nothing.

        Running it on a healthy fleet only inspects.

        Raises:
            HostOperationError: If a host cannot be reached or inspected.
        """
        logger.info("[reconcile] Check for stopped [etcd] containers")
        return await self._with_timeout(
            self._for_each_host("reconcile", self._reconcile_host), timeout
        )

    async def _reconcile_host(self, host: Host) -> ReconcileAction:
        client = await self.connector.connect(host)

        state = await client.inspect(ETCD_CONTAINER_NAME)
        if state is None:
            logger.info(
                f"[reconcile] etcd container not found on host [{host.hostname}], "
                f"checking for [{old_container_name(ETCD_CONTAINER_NAME)}] container"
            )
            return await self._rename_and_start(client, host)

        if state.stopped:
            logger.info(
                f"[reconcile] stopped [etcd] container found on host [{host.hostname}], "
                f"starting container"
            )
            await client.start(ETCD_CONTAINER_NAME)
            return ReconcileAction.STARTED

        return ReconcileAction.NONE

    async def _rename_and_start(self, client: RemoteDockerClient, host: Host) -> ReconcileAction:
        old_name = old_container_name(ETCD_CONTAINER_NAME)
        old_state = await client.inspect(old_name)
        if old_state is None:
            return ReconcileAction.NONE
        if old_state.status.is_active:
            logger.warning(
                f"[reconcile] [{old_name}] on host [{host.hostname}] is {old_state.status.value}, "
                f"leaving it alone"
            )
            return ReconcileAction.NONE

        logger.info(
            f"[reconcile] stopped [{old_name}] container found on host [{host.hostname}], "
            f"starting container"
        )
        await client.rename(old_name, ETCD_CONTAINER_NAME)
        await client.start(ETCD_CONTAINER_NAME)
        return ReconcileAction.RENAMED_AND_STARTED

    # =========================================================================
    # Bring-up
    # =========================================================================

    async def run_etcd_plane(self, timeout: float | None = None) -> None:
        """
        Start an etcd member on every host that has none yet.

        Hosts that already have an ``etcd`` container are skipped; the
        remaining hosts are still processed.
        """
        logger.info("[etcd] Building up etcd plane..")
        await self._with_timeout(self._for_each_host("etcd plane", self._run_etcd_host), timeout)
        logger.info("[etcd] Successfully started etcd plane..")

    async def _run_etcd_host(self, host: Host) -> None:
        client = await self.connector.connect(host)
        if await client.inspect(ETCD_CONTAINER_NAME) is not None:
            logger.info(f"[etcd] etcd is already running on host [{host.hostname}]")
            return
        await client.pull_image(self.settings.ETCD_IMAGE)
        await client.run_detached(etcd_service_spec(host, self.etcd_hosts, self.settings))
        logger.info(f"[etcd] Successfully ran etcd container on host [{host.hostname}]")
