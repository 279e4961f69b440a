"""
Etcd cluster lifecycle for kubeferry.

Provides snapshot, checksum verification, restore, health checks,
reconciliation and bring-up across a cluster's etcd hosts.
"""

from kubeferry.etcd.commands import etcd_connection_string, etcd_initial_cluster
from kubeferry.etcd.exceptions import EtcdError, HostOperationError, SnapshotInconsistentError
from kubeferry.etcd.manager import EtcdClusterManager

__all__ = [
    "EtcdClusterManager",
    "etcd_initial_cluster",
    "etcd_connection_string",
    "EtcdError",
    "HostOperationError",
    "SnapshotInconsistentError",
]
