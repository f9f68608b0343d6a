"""Pydantic models for the record store.

This module defines the three persisted entities of the ingestion pipeline
(Project, Commit, FileEmbedding), their status enums, and the status
transition rules for the project state machine.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    """Return the current UTC time."""
    return datetime.now(tz=UTC)


class ProjectStatus(str, Enum):
    """Lifecycle states of a project ingestion.

    Non-failed states are ordered; a project only moves forward through them.
    FAILED can be entered from any non-terminal state.
    """

    INITIALIZING = "INITIALIZING"
    LOADING_REPO = "LOADING_REPO"
    INDEXING_REPO = "INDEXING_REPO"
    POLLING_COMMITS = "POLLING_COMMITS"
    DEDUCTING_CREDITS = "DEDUCTING_CREDITS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions are allowed."""
        return self in (ProjectStatus.COMPLETED, ProjectStatus.FAILED)

    @property
    def rank(self) -> int:
        """Position in the forward progression (FAILED has no rank)."""
        return _STATUS_ORDER.index(self) if self in _STATUS_ORDER else -1

    def can_transition_to(self, target: "ProjectStatus") -> bool:
        """Check whether moving from this status to ``target`` is legal.

        Args:
            target: Requested next status.

        Returns:
            True for same-status writes, forward moves, and failing a
            non-terminal project.
        """
        if target == self:
            return True
        if self.is_terminal:
            return False
        if target == ProjectStatus.FAILED:
            return True
        return target.rank > self.rank

    def is_past(self, other: "ProjectStatus") -> bool:
        """Whether this status is strictly later than ``other`` in the progression."""
        if self == ProjectStatus.FAILED:
            return False
        return self.rank > other.rank


_STATUS_ORDER = [
    ProjectStatus.INITIALIZING,
    ProjectStatus.LOADING_REPO,
    ProjectStatus.INDEXING_REPO,
    ProjectStatus.POLLING_COMMITS,
    ProjectStatus.DEDUCTING_CREDITS,
    ProjectStatus.COMPLETED,
]


class CommitProcessingStatus(str, Enum):
    """Processing state of a single commit row."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Project(BaseModel):
    """A repository being ingested into the knowledge base.

    Attributes:
        id: Project identifier.
        repo_url: Upstream repository URL.
        user_id: Owner whose credits pay for ingestion.
        status: Current state machine status.
        total_files: Number of files returned by the repository listing.
        processed_files: Files covered by completed batches.
        processing_logs: Append-only log entries grouped by event type.
        created_at: Creation timestamp.
        archived_at: Soft-archive timestamp, None while active.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., description="Project identifier")
    repo_url: str = Field(..., description="Repository URL")
    user_id: str | None = Field(None, description="Owning user")
    status: ProjectStatus = Field(default=ProjectStatus.INITIALIZING, description="Status")
    total_files: int = Field(default=0, ge=0, description="Total files to index")
    processed_files: int = Field(default=0, ge=0, description="Files processed so far")
    processing_logs: dict[str, list[dict[str, Any]]] = Field(
        default_factory=dict, description="Processing log entries by event type"
    )
    created_at: datetime = Field(default_factory=utcnow, description="Creation time")
    archived_at: datetime | None = Field(None, description="Soft-archive time")

    @model_validator(mode="after")
    def _check_progress(self) -> "Project":
        if self.processed_files > self.total_files:
            raise ValueError("processed_files cannot exceed total_files")
        return self

    @property
    def is_archived(self) -> bool:
        """Whether the project has been soft-archived."""
        return self.archived_at is not None


class Commit(BaseModel):
    """A commit summary row, unique per (project_id, commit_hash)."""

    model_config = ConfigDict(extra="forbid")

    project_id: str = Field(..., description="Owning project")
    commit_hash: str = Field(..., description="Commit SHA")
    message: str = Field(default="", description="Commit message")
    author_name: str = Field(default="", description="Author name")
    author_avatar: str = Field(default="", description="Author avatar URL")
    date: str | None = Field(None, description="Author date (ISO-8601)")
    summary: str = Field(default="", description="AI summary or diagnostic")
    processing_status: CommitProcessingStatus = Field(
        default=CommitProcessingStatus.PENDING, description="Processing status"
    )
    updated_at: datetime = Field(default_factory=utcnow, description="Last update time")

    @property
    def key(self) -> tuple[str, str]:
        """Natural key of the row."""
        return (self.project_id, self.commit_hash)


class FileEmbedding(BaseModel):
    """A summarized and embedded source file, unique per (project_id, file_name)."""

    model_config = ConfigDict(extra="forbid")

    project_id: str = Field(..., description="Owning project")
    file_name: str = Field(..., description="Repository-relative path")
    source_code: str = Field(default="", description="Raw source snapshot")
    summary: str = Field(..., description="File summary")
    embedding: list[float] = Field(default_factory=list, description="Summary embedding")
    updated_at: datetime = Field(default_factory=utcnow, description="Last update time")

    @property
    def key(self) -> tuple[str, str]:
        """Natural key of the row."""
        return (self.project_id, self.file_name)
