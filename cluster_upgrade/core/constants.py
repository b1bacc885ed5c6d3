"""
Application-wide constants and configuration parameters.

Centralized defaults for timeouts, backup categories and cluster naming to
ensure consistency across the upgrade orchestration engine.
"""

from typing import Final

# ==============================================================================
# CLUSTER AND NAMING CONSTANTS
# ==============================================================================

DEFAULT_NAMESPACE: Final[str] = "argocd"
# Namespaces of the sample applications removed by "cleanup --uninstall"
DEFAULT_APPLICATION_NAMESPACES: Final[tuple] = ("guestbook", "test-apps")
DEFAULT_VERSION_DEPLOYMENT: Final[str] = "argocd-server"
DEFAULT_ACCESS_POLICY_CONFIGMAP: Final[str] = "argocd-rbac-cm"
DEFAULT_KUBECTL: Final[str] = "kubectl"

# Kinds that are never namespaced when an overlay sets a namespace
CLUSTER_SCOPED_KINDS: Final[frozenset] = frozenset(
    {
        "Namespace",
        "ClusterRole",
        "ClusterRoleBinding",
        "CustomResourceDefinition",
        "PersistentVolume",
        "StorageClass",
        "PriorityClass",
        "ValidatingWebhookConfiguration",
        "MutatingWebhookConfiguration",
    }
)

# Workloads whose selector is part of their identity and cannot be patched
IDENTITY_BEARING_KINDS: Final[frozenset] = frozenset({"StatefulSet"})

# ==============================================================================
# TIMEOUT AND POLLING CONSTANTS
# ==============================================================================

DEFAULT_HEALTH_TIMEOUT: Final[int] = 300  # seconds (5 minutes)
DEFAULT_POLL_INTERVAL: Final[int] = 5  # seconds between readiness polls
DEFAULT_RECREATE_TIMEOUT: Final[int] = 60  # seconds to wait for identity deletion
DEFAULT_COMMAND_TIMEOUT: Final[int] = 120  # seconds per cluster CLI call
LOG_INSPECTION_WINDOW: Final[str] = "2m"

# ==============================================================================
# BACKUP CONSTANTS
# ==============================================================================

DEFAULT_BACKUP_DIR: Final[str] = "backups"
DEFAULT_BACKUP_RETENTION: Final[int] = 10
BACKUP_TIMESTAMP_FORMAT: Final[str] = "%Y%m%d-%H%M%S"
SNAPSHOT_METADATA_FILE: Final[str] = "snapshot.json"
TRANSITIONS_DIR: Final[str] = "transitions"

# Resource categories captured before every mutation, in restore order
BACKUP_CATEGORIES: Final[dict] = {
    "configuration": ["ConfigMap"],
    "access-policy": ["ConfigMap"],
    "secrets": ["Secret"],
    "workloads": ["Deployment", "StatefulSet"],
    "applications": ["AppProject", "Application"],
}

# Fields owned by the API server; stripped so a dump can be re-applied
SERVER_MANAGED_METADATA: Final[tuple] = (
    "resourceVersion",
    "uid",
    "creationTimestamp",
    "generation",
    "managedFields",
    "selfLink",
    "deletionTimestamp",
    "deletionGracePeriodSeconds",
)

# ==============================================================================
# PATH CONSTANTS
# ==============================================================================

DEFAULT_OVERLAYS_DIR: Final[str] = "overlays"
DEFAULT_CREDENTIALS_FILE: Final[str] = ".credentials/password"
KUSTOMIZATION_FILE: Final[str] = "kustomization.yaml"

# Logging configuration
LOG_FORMAT: Final[str] = (
    "%(asctime)s - %(name)s - %(levelname)-8s - [%(filename)s:%(lineno)d] - %(message)s"
)
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

# ==============================================================================
# WORKLOAD STATE CONSTANTS
# ==============================================================================

HEALTHY_STATE: Final[str] = "Healthy"
SYNCED_STATE: Final[str] = "Synced"
FAILED_HEALTH_STATES: Final[frozenset] = frozenset({"Degraded", "Missing", "Unknown"})
PENDING_HEALTH_STATES: Final[frozenset] = frozenset({"Progressing", "Suspended"})
