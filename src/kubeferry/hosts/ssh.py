"""
SSH connection management.

Provides:
- Private key loading with distinct missing/malformed failures
- SSH connection helper using asyncssh
- Remote shell execution with the stderr failure policy
"""

import asyncio

import asyncssh

from kubeferry.config import ClusterConfig, config
from kubeferry.hosts.exceptions import (
    RemoteCommandError,
    SSHAuthenticationError,
    SSHConnectionError,
    SSHKeyFormatError,
    SSHKeyNotFoundError,
)
from kubeferry.models.host import Host
from kubeferry.utils.logger import get_logger

logger = get_logger(__name__)


# --- Private Keys ---


def load_private_key(host: Host, settings: ClusterConfig | None = None) -> asyncssh.SSHKey:
    """
    Load the private key used to authenticate to a host.

    The key path comes from the host's own ``ssh_key_path`` when set, else
    from the cluster configuration. Neither is derived from the environment.

    Raises:
        SSHKeyNotFoundError: If no key path is configured, or the file is
            missing or unreadable.
        SSHKeyFormatError: If the file is not a usable private key.
    """
    settings = settings or config
    key_path = settings.get_ssh_key_path(host.ssh_key_path)
    if key_path is None:
        raise SSHKeyNotFoundError(None, host.hostname)

    try:
        return asyncssh.read_private_key(key_path)
    except FileNotFoundError:
        raise SSHKeyNotFoundError(key_path, host.hostname) from None
    except (PermissionError, IsADirectoryError) as e:
        raise SSHKeyNotFoundError(key_path, host.hostname) from e
    except asyncssh.KeyImportError as e:
        raise SSHKeyFormatError(key_path, host.hostname, str(e)) from e
    except (OSError, UnicodeDecodeError) as e:
        raise SSHKeyFormatError(key_path, host.hostname, str(e)) from e


# --- SSH Connections ---


async def ssh_connect(
    host: Host,
    settings: ClusterConfig | None = None,
) -> asyncssh.SSHClientConnection:
    """
    Open an SSH connection to a host.

    Args:
        host: Target host.
        settings: Cluster configuration (key path, timeout, known hosts).

    Returns:
        asyncssh.SSHClientConnection

    Raises:
        SSHKeyNotFoundError, SSHKeyFormatError: Key problems.
        SSHAuthenticationError: The server rejected the key.
        SSHConnectionError: Refused, unreachable or timed out.
    """
    settings = settings or config
    key = load_private_key(host, settings)
    port = host.ssh_port or settings.SSH_PORT

    logger.debug(f"[SSH] Connecting to {host.user}@{host.address}:{port}")
    try:
        return await asyncio.wait_for(
            asyncssh.connect(
                host.address,
                port=port,
                username=host.user,
                client_keys=[key],
                known_hosts=settings.SSH_KNOWN_HOSTS,
            ),
            timeout=settings.SSH_CONNECT_TIMEOUT,
        )
    except asyncio.TimeoutError:
        raise SSHConnectionError(
            f"Timeout connecting to {host.address}:{port} "
            f"after {settings.SSH_CONNECT_TIMEOUT:g}s",
            host.hostname,
        ) from None
    except asyncssh.PermissionDenied as e:
        raise SSHAuthenticationError(
            f"Authentication failed for user '{host.user}': {e.reason}",
            host.hostname,
        ) from e
    except asyncssh.Error as e:
        raise SSHConnectionError(
            f"SSH negotiation with {host.address}:{port} failed: {e}",
            host.hostname,
        ) from e
    except OSError as e:
        raise SSHConnectionError(
            f"Can't connect to {host.address}:{port}: {e}", host.hostname
        ) from e


# --- Remote Shell Execution ---


def with_sudo(host: Host, cmd: str) -> str:
    """Prefix a command with sudo for hosts that need it."""
    if host.sudo:
        return f"sudo {cmd}"
    return cmd


async def run_ssh_command(
    host: Host,
    cmd: str,
    settings: ClusterConfig | None = None,
    input: str | None = None,
) -> str:
    """
    Run a shell command on a host over a fresh SSH connection.

    A non-zero exit status is always a failure. When
    ``SSH_STDERR_IS_FAILURE`` is set, any stderr output is a failure too,
    even with exit status 0.

    Args:
        host: Target host.
        cmd: Shell command string.
        settings: Cluster configuration.
        input: Data fed to the command's stdin.

    Returns:
        Captured stdout.

    Raises:
        ConnectivityError: If the connection cannot be established.
        RemoteCommandError: If the command is classified as failed.
    """
    settings = settings or config
    cmd = with_sudo(host, cmd)
    logger.debug(f"[SSH] Running command on [{host.hostname}]: {cmd}")

    conn = await ssh_connect(host, settings)
    async with conn:
        result = await conn.run(cmd, check=False, input=input)

    stdout = result.stdout or ""
    stderr = result.stderr or ""
    if isinstance(stdout, bytes):
        stdout = stdout.decode(errors="replace")
    if isinstance(stderr, bytes):
        stderr = stderr.decode(errors="replace")

    if result.exit_status != 0:
        raise RemoteCommandError(cmd, host.hostname, stderr, result.exit_status)
    if stderr:
        if settings.SSH_STDERR_IS_FAILURE:
            raise RemoteCommandError(cmd, host.hostname, stderr, result.exit_status)
        logger.warning(f"[SSH] Command on [{host.hostname}] wrote to stderr: {stderr.strip()}")

    return stdout
