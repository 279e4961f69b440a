"""
Docker engine access for kubeferry.

Provides a docker-py client bound to one host's engine plus the container
naming conventions shared by the etcd lifecycle code.
"""

from kubeferry.docker.client import (
    ContainerSpec,
    ContainerState,
    HelperResult,
    RemoteDockerClient,
)
from kubeferry.docker.exceptions import (
    ContainerNotFoundError,
    ContainerOperationError,
    ContainerStateError,
    DockerConnectionError,
    DockerError,
    HelperContainerError,
)

__all__ = [
    # Client
    "RemoteDockerClient",
    "ContainerSpec",
    "ContainerState",
    "HelperResult",
    # Exceptions
    "DockerError",
    "DockerConnectionError",
    "ContainerStateError",
    "ContainerNotFoundError",
    "ContainerOperationError",
    "HelperContainerError",
]
