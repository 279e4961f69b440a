"""
Enumeration types for kubeferry.

This module defines the enumeration types shared across the host, docker and
etcd subsystems for consistent role, state and configuration handling.
"""

from enum import Enum


# =============================================================================
# Host-Related Enums
# =============================================================================


class HostRole(str, Enum):
    """
    Role a host plays in the cluster.

    Roles are not exclusive: a single machine may carry all three.
    """

    ETCD = "etcd"
    CONTROLPLANE = "controlplane"
    WORKER = "worker"


# =============================================================================
# Container-Related Enums
# =============================================================================


class ContainerStatus(str, Enum):
    """
    Container state as reported by the Docker engine.

    Values match ``State.Status`` of ``docker inspect``.
    """

    CREATED = "created"
    RUNNING = "running"
    PAUSED = "paused"
    RESTARTING = "restarting"
    REMOVING = "removing"
    EXITED = "exited"
    DEAD = "dead"

    @property
    def is_stopped(self) -> bool:
        """Whether the container is down and can be started again."""
        return self in (ContainerStatus.EXITED, ContainerStatus.DEAD)

    @property
    def is_active(self) -> bool:
        """Whether the container is up or transitioning and must not be renamed."""
        return self in (
            ContainerStatus.RUNNING,
            ContainerStatus.RESTARTING,
            ContainerStatus.PAUSED,
            ContainerStatus.REMOVING,
        )


class ReconcileAction(str, Enum):
    """What reconcile did to one host's etcd container."""

    NONE = "none"
    STARTED = "started"
    RENAMED_AND_STARTED = "renamed_and_started"


# =============================================================================
# Configuration Enums
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels.

    Levels (from most to least verbose):
        - FULL: Complete trace with detailed stack information
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
