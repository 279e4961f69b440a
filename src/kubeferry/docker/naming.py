"""Container naming conventions and labels."""

# Service containers
ETCD_CONTAINER_NAME = "etcd"
OLD_CONTAINER_PREFIX = "old-"

# Run-once helper containers
ETCD_SNAPSHOT_CONTAINER_NAME = "etcd-snapshot-once"
ETCD_CHECKSUM_CONTAINER_NAME = "etcd-checksum-checker"
ETCD_RESTORE_CONTAINER_NAME = "etcd-restore"
ETCD_RESTORE_FILES_CONTAINER_NAME = "etcd-restore-files"

# Labels (for tracking)
LABEL_MANAGED = "kubeferry.managed"
LABEL_ROLE = "kubeferry.role"


def old_container_name(name: str) -> str:
    """Name a previous-generation container is renamed aside to."""
    return f"{OLD_CONTAINER_PREFIX}{name}"


def make_labels(role: str) -> dict[str, str]:
    """Labels attached to every container kubeferry creates."""
    return {LABEL_MANAGED: "true", LABEL_ROLE: role}
