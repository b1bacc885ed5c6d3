"""
Validation module for preflight, health gating and post-transition checks.

Provides read-only precondition checks, bounded readiness waits, access
policy evaluation and post-transition validation.
"""

from .health_gate import HealthGate
from .post_transition_validator import PostTransitionValidator
from .preflight import PreflightValidator, collect_system_summary
from .rbac_policy import RBACPolicy

__all__ = [
    "HealthGate",
    "PostTransitionValidator",
    "PreflightValidator",
    "RBACPolicy",
    "collect_system_summary",
]
