"""
Upgrade module for backups, resource application and transition control.

Provides snapshot capture and restore, migration and target apply, the
per-transition state machine, its journal and operator-invoked rollback.
"""

from .backup_manager import StateBackupManager
from .journal import TransitionJournal
from .orchestrator import TransitionOrchestrator
from .rollback_controller import RollbackController
from .transition_executor import TransitionExecutor

__all__ = [
    "StateBackupManager",
    "TransitionJournal",
    "TransitionOrchestrator",
    "RollbackController",
    "TransitionExecutor",
]
