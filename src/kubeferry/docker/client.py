"""
Remote Docker client using docker-py SDK.

This module provides RemoteDockerClient, a docker-py client bound to one
host's engine, normally through the local end of that host's SSH tunnel.

Features:
    - Container inspection with not-found as a normal outcome
    - Container lifecycle (start, stop, rename, remove)
    - Run-once helper containers with captured output
    - Long-running service containers

docker-py is blocking, so every call runs in a worker thread. That keeps
the event loop free to serve the tunnel the request travels through.
"""

import asyncio
from dataclasses import dataclass, field

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.models.containers import Container

from kubeferry.config import ClusterConfig, config
from kubeferry.docker.exceptions import (
    ContainerNotFoundError,
    ContainerOperationError,
    ContainerStateError,
    DockerConnectionError,
    HelperContainerError,
)
from kubeferry.models.enums import ContainerStatus
from kubeferry.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class ContainerState:
    """Inspected state of one container."""

    name: str
    status: ContainerStatus
    image: str = ""

    @property
    def running(self) -> bool:
        return self.status == ContainerStatus.RUNNING

    @property
    def stopped(self) -> bool:
        return self.status.is_stopped

    @classmethod
    def from_container(cls, container: Container) -> "ContainerState":
        state = container.attrs.get("State", {})
        return cls(
            name=container.name,
            status=ContainerStatus(state.get("Status", "exited")),
            image=container.attrs.get("Config", {}).get("Image", ""),
        )


@dataclass
class ContainerSpec:
    """
    Everything needed to run a container.

    ``volumes`` maps host paths to container paths; a ``:ro`` suffix on the
    container path mounts it read-only.
    """

    name: str
    image: str
    command: list[str]
    volumes: dict[str, str] = field(default_factory=dict)
    environment: dict[str, str] = field(default_factory=dict)
    network_mode: str | None = "host"
    labels: dict[str, str] = field(default_factory=dict)

    def docker_volumes(self) -> dict[str, dict[str, str]]:
        """Volumes in docker-py's ``{host: {"bind": ..., "mode": ...}}`` form."""
        result = {}
        for host_path, container_path in self.volumes.items():
            bind, _, mode = container_path.partition(":")
            result[host_path] = {"bind": bind, "mode": mode or "rw"}
        return result


@dataclass
class HelperResult:
    """Outcome of a run-once helper container."""

    exit_code: int
    stdout: str
    stderr: str


# =============================================================================
# RemoteDockerClient
# =============================================================================


class RemoteDockerClient:
    """
    Docker engine client for a single host.

    Attributes:
        hostname: Host the engine runs on (used in errors and logs).
        client: The docker-py client instance.
    """

    def __init__(
        self,
        base_url: str,
        hostname: str,
        api_version: str = "1.24",
        timeout: int = 60,
    ):
        """
        Bind a docker-py client to an engine URL.

        Args:
            base_url: ``unix://...`` for a tunnel socket or ``tcp://...``
                for an engine on the local network.
            hostname: Host the engine runs on.
            api_version: Fixed Docker API version.
            timeout: Request timeout in seconds.

        Raises:
            DockerConnectionError: If the client cannot be constructed.
        """
        self.hostname = hostname
        self.base_url = base_url
        try:
            self.client = docker.DockerClient(
                base_url=base_url, version=api_version, timeout=timeout
            )
        except DockerException as e:
            raise DockerConnectionError(str(e), hostname) from e
        logger.debug(f"Connecting to Docker socket [{base_url}]")

    @classmethod
    def for_socket(
        cls,
        socket_path: str,
        hostname: str,
        settings: ClusterConfig | None = None,
    ) -> "RemoteDockerClient":
        """Create a client bound to a local tunnel socket."""
        settings = settings or config
        return cls(
            f"unix://{socket_path}",
            hostname,
            api_version=settings.DOCKER_API_VERSION,
            timeout=settings.DOCKER_TIMEOUT,
        )

    def close(self) -> None:
        self.client.close()

    async def ping(self) -> None:
        """
        Check the engine answers.

        Raises:
            DockerConnectionError: If it does not.
        """
        try:
            await asyncio.to_thread(self.client.ping)
        except (DockerException, OSError) as e:
            raise DockerConnectionError(str(e), self.hostname) from e

    # =========================================================================
    # Container Inspection
    # =========================================================================

    async def inspect(self, name: str) -> ContainerState | None:
        """
        Inspect a container by name.

        Returns:
            The container state, or None if no such container exists.

        Raises:
            ContainerStateError: On any engine failure other than not-found.
        """
        return await asyncio.to_thread(self._inspect, name)

    def _inspect(self, name: str) -> ContainerState | None:
        try:
            container = self.client.containers.get(name)
        except NotFound:
            return None
        except (DockerException, OSError) as e:
            raise ContainerStateError(name, self.hostname, str(e)) from e
        try:
            return ContainerState.from_container(container)
        except ValueError as e:
            raise ContainerStateError(name, self.hostname, str(e)) from e

    def _get(self, name: str, action: str) -> Container:
        try:
            return self.client.containers.get(name)
        except NotFound:
            raise ContainerNotFoundError(name, self.hostname) from None
        except (DockerException, OSError) as e:
            raise ContainerOperationError(action, name, self.hostname, str(e)) from e

    # =========================================================================
    # Container Lifecycle
    # =========================================================================

    async def start(self, name: str) -> None:
        """Start a stopped container."""
        await asyncio.to_thread(self._start, name)

    def _start(self, name: str) -> None:
        container = self._get(name, "start")
        try:
            container.start()
        except (DockerException, OSError) as e:
            raise ContainerOperationError("start", name, self.hostname, str(e)) from e
        logger.info(f"Container [{name}] started on host [{self.hostname}]")

    async def stop(self, name: str, timeout: int = 10) -> None:
        """Stop a running container."""
        await asyncio.to_thread(self._stop, name, timeout)

    def _stop(self, name: str, timeout: int) -> None:
        container = self._get(name, "stop")
        try:
            container.stop(timeout=timeout)
        except (DockerException, OSError) as e:
            raise ContainerOperationError("stop", name, self.hostname, str(e)) from e
        logger.info(f"Container [{name}] stopped on host [{self.hostname}]")

    async def rename(self, old_name: str, new_name: str) -> None:
        """Rename a container."""
        await asyncio.to_thread(self._rename, old_name, new_name)

    def _rename(self, old_name: str, new_name: str) -> None:
        container = self._get(old_name, "rename")
        try:
            container.rename(new_name)
        except (DockerException, OSError) as e:
            raise ContainerOperationError("rename", old_name, self.hostname, str(e)) from e
        logger.info(f"Container [{old_name}] renamed to [{new_name}] on host [{self.hostname}]")

    async def remove(self, name: str, force: bool = True) -> bool:
        """
        Remove a container.

        Returns:
            True if a container was removed, False if none existed.
        """
        return await asyncio.to_thread(self._remove, name, force)

    def _remove(self, name: str, force: bool) -> bool:
        try:
            container = self.client.containers.get(name)
            container.remove(force=force)
        except NotFound:
            return False
        except (DockerException, OSError) as e:
            raise ContainerOperationError("remove", name, self.hostname, str(e)) from e
        logger.debug(f"Container [{name}] removed on host [{self.hostname}]")
        return True

    # =========================================================================
    # Images
    # =========================================================================

    async def pull_image(self, image: str) -> None:
        """Pull an image unless it is already present."""
        await asyncio.to_thread(self._pull_image, image)

    def _pull_image(self, image: str) -> None:
        try:
            self.client.images.get(image)
            logger.debug(f"Image [{image}] already present on host [{self.hostname}]")
            return
        except ImageNotFound:
            pass
        except (DockerException, OSError) as e:
            raise DockerConnectionError(str(e), self.hostname) from e

        logger.info(f"Pulling image [{image}] on host [{self.hostname}]...")
        try:
            self.client.images.pull(image)
        except (DockerException, OSError) as e:
            raise DockerConnectionError(f"pull of {image} failed: {e}", self.hostname) from e
        logger.info(f"Successfully pulled image [{image}] on host [{self.hostname}]")

    # =========================================================================
    # Running Containers
    # =========================================================================

    def _run(self, spec: ContainerSpec, detach: bool = True, **kwargs) -> Container:
        run_kwargs = {
            "name": spec.name,
            "detach": detach,
            "volumes": spec.docker_volumes(),
            "environment": spec.environment,
            "labels": spec.labels,
            **kwargs,
        }
        if spec.network_mode:
            run_kwargs["network_mode"] = spec.network_mode

        try:
            return self.client.containers.run(spec.image, spec.command, **run_kwargs)
        except ImageNotFound:
            logger.info(f"Image {spec.image} not found on host [{self.hostname}], pulling...")
            self.client.images.pull(spec.image)
            return self.client.containers.run(spec.image, spec.command, **run_kwargs)

    async def run_once(self, spec: ContainerSpec) -> HelperResult:
        """
        Run a throwaway helper container to completion.

        A leftover helper with the same name is removed first; the helper is
        removed again once its output has been collected.

        Returns:
            Exit code and captured stdout/stderr.

        Raises:
            HelperContainerError: If the helper cannot be created or waited on.
        """
        return await asyncio.to_thread(self._run_once, spec)

    def _run_once(self, spec: ContainerSpec) -> HelperResult:
        self._remove(spec.name, force=True)
        logger.debug(f"Running helper [{spec.name}] on host [{self.hostname}]: {spec.command}")

        try:
            container = self._run(spec)
        except (APIError, DockerException, OSError) as e:
            raise HelperContainerError(spec.name, self.hostname, str(e)) from e

        try:
            status = container.wait()
            exit_code = int(status.get("StatusCode", -1))
            stdout = container.logs(stdout=True, stderr=False).decode(errors="replace")
            stderr = container.logs(stdout=False, stderr=True).decode(errors="replace")
        except (DockerException, OSError) as e:
            raise HelperContainerError(spec.name, self.hostname, str(e)) from e
        finally:
            try:
                container.remove(force=True)
            except (DockerException, OSError) as e:
                logger.warning(f"Failed to remove helper [{spec.name}] on host [{self.hostname}]: {e}")

        return HelperResult(exit_code=exit_code, stdout=stdout, stderr=stderr)

    async def run_detached(
        self,
        spec: ContainerSpec,
        restart_policy: str = "always",
    ) -> str:
        """
        Start a long-running service container.

        Returns:
            The new container's ID.

        Raises:
            ContainerOperationError: If the container cannot be created.
        """
        return await asyncio.to_thread(self._run_detached, spec, restart_policy)

    def _run_detached(self, spec: ContainerSpec, restart_policy: str) -> str:
        try:
            container = self._run(spec, restart_policy={"Name": restart_policy})
        except (APIError, DockerException, OSError) as e:
            raise ContainerOperationError("run", spec.name, self.hostname, str(e)) from e
        logger.info(f"Successfully ran container [{spec.name}] on host [{self.hostname}]")
        return container.id
