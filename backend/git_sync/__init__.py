"""
Source sync for git-tracked projects.

This module provides:
- GitService: checkout management and remote change detection
- SyncResult: Result dataclass for sync operations
"""
from git_sync.git_service import (
    GitService,
    GitNotAvailableError,
    SourceSyncError,
    SyncResult,
    BRANCH_PRIORITY,
)

__all__ = [
    'GitService',
    'GitNotAvailableError',
    'SourceSyncError',
    'SyncResult',
    'BRANCH_PRIORITY',
]
