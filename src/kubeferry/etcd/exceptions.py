"""Etcd lifecycle exception classes."""


class EtcdError(Exception):
    """Base exception for etcd cluster operations."""

    pass


class HostOperationError(EtcdError):
    """
    A multi-host operation aborted on one host.

    Attributes:
        operation: Operation that was running (``snapshot``, ``restore``...).
        hostname: Host the operation failed on.
        cause: Underlying exception.
    """

    def __init__(self, operation: str, hostname: str, cause: BaseException):
        self.operation = operation
        self.hostname = hostname
        self.cause = cause
        super().__init__(f"[etcd] {operation} failed on host [{hostname}]: {cause}")


class SnapshotInconsistentError(EtcdError):
    """
    Snapshot copies differ between hosts, or could not all be checksummed.

    Attributes:
        snapshot_name: Snapshot that failed verification.
        checksums: Checksum collected per host, in host order.
        cause: Per-host failure that prevented collecting every checksum.
    """

    def __init__(
        self,
        snapshot_name: str,
        checksums: dict[str, str] | None = None,
        cause: BaseException | None = None,
    ):
        self.snapshot_name = snapshot_name
        self.checksums = dict(checksums or {})
        self.cause = cause

        if cause is not None:
            detail = f"checksum could not be collected: {cause}"
        elif not self.checksums:
            detail = "no checksums collected"
        else:
            listed = ", ".join(f"{host}={value}" for host, value in self.checksums.items())
            detail = f"checksums differ: {listed}"
        super().__init__(f"etcd snapshots [{snapshot_name}] are not consistent: {detail}")
