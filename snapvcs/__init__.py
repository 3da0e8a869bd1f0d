import logging

from .base import (
    Blob,
    CommitGraph,
    CommitHistory,
    CommitId,
    ContentHash,
    ContentStore,
    RepoState,
    Snapshot,
    StagingArea,
    StateStore,
)
from .commit import Commit
from .config import RepoConfig
from .errors import ErrorKind, Result, VcsError
from .impl.memory import create_memory_state_store
from .impl.sql import create_sql_state_store
from .repository import Repository, Status

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "Blob",
    "Commit",
    "CommitGraph",
    "CommitHistory",
    "CommitId",
    "ContentHash",
    "ContentStore",
    "ErrorKind",
    "RepoConfig",
    "RepoState",
    "Repository",
    "Result",
    "Snapshot",
    "StagingArea",
    "StateStore",
    "Status",
    "VcsError",
    "create_memory_state_store",
    "create_sql_state_store",
]
