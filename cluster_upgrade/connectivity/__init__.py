"""
Connectivity module for cluster control API access.

Provides the ClusterClient abstraction and its kubectl implementation.
"""

from .cluster_client import (
    ClusterClient,
    KubectlClient,
    ReplicaStatus,
    parse_apply_conflicts,
)

__all__ = [
    "ClusterClient",
    "KubectlClient",
    "ReplicaStatus",
    "parse_apply_conflicts",
]
