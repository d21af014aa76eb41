"""
Backup module for rotabackup.

This module handles the core backup functionality including:
- Archive naming and calendar rules
- Compression and extraction
- Checksum sidecars
- The run lock
- Retention selection
- Rotation and restore orchestration
"""

from .executor import RotationController, run_rotation
from .restore import RestoreController, ArchiveNotFoundError, restore_archive
from .retention import RetentionManager, select_for_deletion
from .storage import BackupRoot, StorageError
from .lock import RunLock, LockError, LockHeldError, RunInterrupted
from .digest import IntegrityError, compute_and_store, verify
from .sources import SourceNotFoundError, SourcePermissionError
from .compression import ArchivalFailure, ExtractionError

__all__ = [
    'RotationController',
    'run_rotation',
    'RestoreController',
    'ArchiveNotFoundError',
    'restore_archive',
    'RetentionManager',
    'select_for_deletion',
    'BackupRoot',
    'StorageError',
    'RunLock',
    'LockError',
    'LockHeldError',
    'RunInterrupted',
    'IntegrityError',
    'compute_and_store',
    'verify',
    'SourceNotFoundError',
    'SourcePermissionError',
    'ArchivalFailure',
    'ExtractionError'
]
