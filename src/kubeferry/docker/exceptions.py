"""Docker-related exception classes."""


class DockerError(Exception):
    """Base exception for Docker engine operations."""

    pass


class DockerConnectionError(DockerError):
    """Failed to reach the Docker engine."""

    def __init__(self, message: str, hostname: str):
        self.hostname = hostname
        super().__init__(f"Can't connect to Docker for host [{hostname}]: {message}")


class ContainerStateError(DockerError):
    """Inspecting a container failed for a reason other than not-found."""

    def __init__(self, container_name: str, hostname: str, reason: str):
        self.container_name = container_name
        self.hostname = hostname
        super().__init__(
            f"Failed to inspect container [{container_name}] on host [{hostname}]: {reason}"
        )


class ContainerNotFoundError(DockerError):
    """Container not found where one was required."""

    def __init__(self, container_name: str, hostname: str):
        self.container_name = container_name
        self.hostname = hostname
        super().__init__(f"Container [{container_name}] not found on host [{hostname}]")


class ContainerOperationError(DockerError):
    """Starting, stopping, renaming or removing a container failed."""

    def __init__(self, action: str, container_name: str, hostname: str, reason: str):
        self.action = action
        self.container_name = container_name
        self.hostname = hostname
        super().__init__(
            f"Failed to {action} container [{container_name}] on host [{hostname}]: {reason}"
        )


class HelperContainerError(DockerError):
    """A run-once helper container could not run or exited non-zero."""

    def __init__(self, container_name: str, hostname: str, reason: str, exit_code: int | None = None):
        self.container_name = container_name
        self.hostname = hostname
        self.exit_code = exit_code
        super().__init__(
            f"Helper container [{container_name}] failed on host [{hostname}]: {reason}"
        )
