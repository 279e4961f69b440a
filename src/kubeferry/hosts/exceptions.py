"""Host connectivity exception classes."""


class HostError(Exception):
    """Base exception for host connectivity and remote execution."""

    pass


class ConnectivityError(HostError):
    """A host could not be reached for the current operation."""

    def __init__(self, message: str, hostname: str):
        self.hostname = hostname
        super().__init__(f"[{hostname}] {message}")


class SSHKeyNotFoundError(ConnectivityError):
    """Private key file does not exist or cannot be read."""

    def __init__(self, key_path: str | None, hostname: str):
        self.key_path = key_path
        if key_path is None:
            message = "no SSH private key configured"
        else:
            message = f"SSH private key not found: '{key_path}'"
        super().__init__(message, hostname)


class SSHKeyFormatError(ConnectivityError):
    """Private key file exists but cannot be parsed."""

    def __init__(self, key_path: str, hostname: str, reason: str):
        self.key_path = key_path
        super().__init__(f"Invalid SSH private key '{key_path}': {reason}", hostname)


class SSHConnectionError(ConnectivityError):
    """SSH server refused, unreachable, or timed out."""

    pass


class SSHAuthenticationError(ConnectivityError):
    """SSH server rejected the key."""

    pass


class RemoteDialError(ConnectivityError):
    """SSH is up but the remote socket could not be opened."""

    def __init__(self, remote_path: str, hostname: str, reason: str):
        self.remote_path = remote_path
        super().__init__(f"Can't reach remote socket '{remote_path}': {reason}", hostname)


class LocalListenError(ConnectivityError):
    """Local tunnel socket could not be bound."""

    def __init__(self, socket_path: str, hostname: str, reason: str):
        self.socket_path = socket_path
        super().__init__(f"Can't listen on '{socket_path}': {reason}", hostname)


class DialError(ConnectivityError):
    """A dialer failed to open a connection."""

    def __init__(self, network: str, address: str, hostname: str, reason: str):
        self.network = network
        self.address = address
        super().__init__(f"Can't dial {network} '{address}': {reason}", hostname)


class TunnelTimeoutError(HostError):
    """Tunnel socket did not appear within the deadline."""

    def __init__(self, hostname: str, timeout: float):
        self.hostname = hostname
        self.timeout = timeout
        super().__init__(
            f"Timeout waiting for socket to be created for host [{hostname}] "
            f"after {timeout:g}s"
        )


class RemoteCommandError(HostError):
    """Remote shell command failed."""

    def __init__(self, command: str, hostname: str, stderr: str, exit_status: int | None):
        self.command = command
        self.hostname = hostname
        self.stderr = stderr
        self.exit_status = exit_status
        super().__init__(
            f"Failed to run SSH command on [{hostname}] "
            f"(exit status {exit_status}): {stderr.strip()}"
        )
