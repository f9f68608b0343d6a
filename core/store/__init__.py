"""Record storage for projects, commits, file embeddings and credits."""

from .base import (
    InvalidStatusTransitionError,
    ProjectNotFoundError,
    RecordStore,
    RecordStoreError,
)
from .memory import InMemoryRecordStore
from .models import (
    Commit,
    CommitProcessingStatus,
    FileEmbedding,
    Project,
    ProjectStatus,
    utcnow,
)

__all__ = [
    # Contract
    "RecordStore",
    "RecordStoreError",
    "ProjectNotFoundError",
    "InvalidStatusTransitionError",
    # Backends
    "InMemoryRecordStore",
    # Models
    "Project",
    "ProjectStatus",
    "Commit",
    "CommitProcessingStatus",
    "FileEmbedding",
    "utcnow",
]
