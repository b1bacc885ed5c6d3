"""
Cluster upgrade orchestration engine.

Health-gated, backup-first transitions along a fixed release ladder with
operator-invoked rollback.
"""

__version__ = "1.0.0"
