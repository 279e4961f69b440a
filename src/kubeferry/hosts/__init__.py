"""
Host connectivity for kubeferry.

Provides:
- SSH connections and remote shell execution
- SSH tunnels exposing a host's Docker socket locally
- Transport dialers (direct or through a tunnel)
"""

from kubeferry.hosts.dialer import (
    Dialer,
    DialerFactory,
    DialerRelay,
    direct_dialer_factory,
    tunnel_dialer,
)
from kubeferry.hosts.direct import DirectHostConnector
from kubeferry.hosts.exceptions import (
    ConnectivityError,
    DialError,
    HostError,
    LocalListenError,
    RemoteCommandError,
    RemoteDialError,
    SSHAuthenticationError,
    SSHConnectionError,
    SSHKeyFormatError,
    SSHKeyNotFoundError,
    TunnelTimeoutError,
)
from kubeferry.hosts.ssh import run_ssh_command, ssh_connect
from kubeferry.hosts.tunnel import HostConnector, HostTunnel, HostTunnelPool

__all__ = [
    # Tunnels
    "HostTunnel",
    "HostTunnelPool",
    "HostConnector",
    "DirectHostConnector",
    # Dialers
    "Dialer",
    "DialerFactory",
    "DialerRelay",
    "direct_dialer_factory",
    "tunnel_dialer",
    # SSH
    "ssh_connect",
    "run_ssh_command",
    # Exceptions
    "HostError",
    "ConnectivityError",
    "SSHKeyNotFoundError",
    "SSHKeyFormatError",
    "SSHConnectionError",
    "SSHAuthenticationError",
    "RemoteDialError",
    "LocalListenError",
    "DialError",
    "TunnelTimeoutError",
    "RemoteCommandError",
]
