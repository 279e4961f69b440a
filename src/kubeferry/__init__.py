"""
kubeferry - etcd and container-engine lifecycle over plain SSH.

Provisions and maintains the etcd plane of a Kubernetes cluster on machines
that are reachable only over SSH and run no agent. Each host's Docker socket
is tunneled to a local Unix socket, and the etcd cluster manager drives
snapshot, restore, health and reconcile operations through those tunnels.
"""

__version__ = "0.1.0"
