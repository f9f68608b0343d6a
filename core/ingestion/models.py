"""Pydantic models for the ingestion module.

This module defines the pipeline configuration and the value types that
flow between pipeline components: repository documents and commit metadata
returned by collaborators, per-batch and per-file outcomes, commit wave
schedules, and delta reindex summaries.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from core.store.models import CommitProcessingStatus, ProjectStatus, utcnow


class PipelineError(Exception):
    """Base exception for ingestion pipeline errors."""

    pass


class PipelineConfig(BaseModel):
    """Tunable limits of the ingestion pipeline.

    Attributes:
        file_batch_size: Files processed per batch before a progress checkpoint.
        file_batch_delay_seconds: Pause between file batches.
        commit_wave_size: Commit jobs per wave.
        commit_wave_delay_seconds: Self-delay added per wave index.
        commit_jitter_seconds: Upper bound of the random delay per commit job.
        reindex_batch_size: Files per delta reindex batch.
        reindex_batch_delay_seconds: Pause between delta reindex batches.
        failure_message_limit: Maximum length of stored failure diagnostics.
        max_commits: Number of recent commits the repository lister returns.
    """

    model_config = ConfigDict(frozen=True)

    file_batch_size: int = Field(default=2, ge=1, description="Files per batch")
    file_batch_delay_seconds: float = Field(default=2.0, ge=0, description="Delay between batches")
    commit_wave_size: int = Field(default=3, ge=1, description="Commit jobs per wave")
    commit_wave_delay_seconds: float = Field(default=20.0, ge=0, description="Delay per wave")
    commit_jitter_seconds: float = Field(default=3.0, ge=0, description="Max per-job jitter")
    reindex_batch_size: int = Field(default=3, ge=1, description="Files per reindex batch")
    reindex_batch_delay_seconds: float = Field(
        default=2.0, ge=0, description="Delay between reindex batches"
    )
    failure_message_limit: int = Field(
        default=100, ge=1, description="Truncation of failure messages"
    )
    max_commits: int = Field(default=15, ge=1, description="Recent commits to consider")


class Document(BaseModel):
    """A single source file from the repository listing."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Repository-relative path")
    content: str = Field(default="", description="File content")


class CommitInfo(BaseModel):
    """Commit metadata from the repository history.

    Attributes:
        commit_hash: Commit SHA.
        message: Commit message.
        author_name: Author display name.
        author_avatar: Author avatar URL.
        date: Author date as an ISO-8601 string.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    commit_hash: str = Field(..., description="Commit SHA")
    message: str = Field(default="", description="Commit message")
    author_name: str = Field(default="", description="Author name")
    author_avatar: str = Field(default="", description="Author avatar URL")
    date: str | None = Field(None, description="Author date")


class FileOutcomeStatus(str, Enum):
    """Result of indexing one file."""

    INDEXED = "indexed"
    SKIPPED = "skipped"
    FAILED = "failed"


class FileOutcome(BaseModel):
    """Outcome of indexing a single document."""

    path: str = Field(..., description="File path")
    status: FileOutcomeStatus = Field(..., description="Outcome")
    error: str | None = Field(None, description="Error message when failed")


class BatchResult(BaseModel):
    """Result of one file batch.

    Attributes:
        batch_index: Zero-based batch number.
        start: Index of the first file in the batch.
        end: Index one past the last file in the batch.
        outcomes: Per-file outcomes, empty when the batch was resumed past.
        resumed: True if the batch was skipped because progress already covered it.
    """

    batch_index: int = Field(..., ge=0, description="Batch index")
    start: int = Field(..., ge=0, description="First file index")
    end: int = Field(..., ge=0, description="One past the last file index")
    outcomes: list[FileOutcome] = Field(default_factory=list, description="File outcomes")
    resumed: bool = Field(default=False, description="Skipped by checkpoint")

    @property
    def size(self) -> int:
        """Number of files in the batch."""
        return self.end - self.start

    def count(self, status: FileOutcomeStatus) -> int:
        """Count outcomes with the given status."""
        return sum(1 for o in self.outcomes if o.status == status)


class CommitJob(BaseModel):
    """A single scheduled commit processing job."""

    model_config = ConfigDict(frozen=True)

    commit: CommitInfo = Field(..., description="Commit to process")
    commit_index: int = Field(..., ge=0, description="Position in the unprocessed list")
    total_commits: int = Field(..., ge=0, description="Number of unprocessed commits")
    wave_index: int = Field(..., ge=0, description="Wave number")
    total_waves: int = Field(..., ge=0, description="Number of waves")
    delay_seconds: float = Field(..., ge=0, description="Self-delay before processing")


class WaveSchedule(BaseModel):
    """Commit jobs partitioned into time-staggered waves.

    Attributes:
        jobs: Every scheduled job, in commit order.
        wave_size: Maximum jobs per wave.
        wave_delay_seconds: Delay between the starts of consecutive waves.
    """

    jobs: list[CommitJob] = Field(default_factory=list, description="Scheduled jobs")
    wave_size: int = Field(..., ge=1, description="Jobs per wave")
    wave_delay_seconds: float = Field(..., ge=0, description="Delay between waves")

    @property
    def total_commits(self) -> int:
        return len(self.jobs)

    @property
    def total_waves(self) -> int:
        return -(-len(self.jobs) // self.wave_size)

    @property
    def estimated_seconds(self) -> float:
        """Rough wall-clock time for all waves to start and settle."""
        return self.total_waves * self.wave_delay_seconds

    def waves(self) -> list[list[CommitJob]]:
        """Group jobs by wave index."""
        grouped: list[list[CommitJob]] = [[] for _ in range(self.total_waves)]
        for job in self.jobs:
            grouped[job.wave_index].append(job)
        return grouped

    def active_at(self, t: float) -> list[CommitJob]:
        """Return the jobs whose wave window contains time ``t``.

        A job is active from its delay until the next wave is due to start.
        """
        return [
            job
            for job in self.jobs
            if job.delay_seconds <= t < job.delay_seconds + self.wave_delay_seconds
        ]


class CommitResult(BaseModel):
    """Outcome of one commit processing job."""

    project_id: str = Field(..., description="Project ID")
    commit_hash: str = Field(..., description="Commit SHA")
    status: CommitProcessingStatus = Field(..., description="Final commit status")
    summary: str = Field(default="", description="Stored summary or diagnostic")
    duplicate: bool = Field(
        default=False, description="Delivery was for an already completed commit"
    )


class ReindexStatus(str, Enum):
    """Result of reindexing one changed path."""

    REINDEXED = "reindexed"
    REMOVED = "removed"
    SKIPPED = "skipped"
    ERROR = "error"


class ReindexOutcome(BaseModel):
    """Outcome for a single changed path."""

    file: str = Field(..., description="File path")
    status: ReindexStatus = Field(..., description="Outcome")
    error: str | None = Field(None, description="Error message")


class ReindexSummary(BaseModel):
    """Aggregate result of a delta reindex run.

    Attributes:
        project_id: Project that was reindexed.
        reason: Trigger of the run (push, pull_request, ...).
        commit_hash: Commit that triggered the run, if any.
        changed_files: Paths named in the change notification.
        results: One outcome per processed path.
    """

    project_id: str = Field(..., description="Project ID")
    reason: str = Field(..., description="Trigger reason")
    commit_hash: str | None = Field(None, description="Triggering commit")
    changed_files: list[str] = Field(default_factory=list, description="Changed paths")
    results: list[ReindexOutcome] = Field(default_factory=list, description="Per-file outcomes")

    def count(self, status: ReindexStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    def to_log_entry(self, timestamp: datetime | None = None) -> dict[str, Any]:
        """Render the summary as a processing log entry."""
        return {
            "timestamp": (timestamp or utcnow()).isoformat(),
            "reason": self.reason,
            "commit_hash": self.commit_hash,
            "changed_files": list(self.changed_files),
            "results": [r.model_dump(mode="json") for r in self.results],
            "reindexed": self.count(ReindexStatus.REINDEXED),
            "removed": self.count(ReindexStatus.REMOVED),
            "skipped": self.count(ReindexStatus.SKIPPED),
            "errors": self.count(ReindexStatus.ERROR),
        }


class IngestionResult(BaseModel):
    """Result of a project ingestion run.

    Attributes:
        project_id: Project identifier.
        status: Final project status.
        total_files: Files returned by the repository listing.
        processed_files: Files covered by completed batches.
        batches: Number of file batches.
        commits_dispatched: Commit jobs sent for processing.
        total_waves: Waves in the commit schedule.
        credits_deducted: Whether this run applied the credit deduction.
        skipped: True if the delivery found the project already terminal.
    """

    project_id: str = Field(..., description="Project ID")
    status: ProjectStatus = Field(..., description="Final status")
    total_files: int = Field(default=0, ge=0, description="Total files")
    processed_files: int = Field(default=0, ge=0, description="Processed files")
    batches: int = Field(default=0, ge=0, description="File batches")
    commits_dispatched: int = Field(default=0, ge=0, description="Commit jobs sent")
    total_waves: int = Field(default=0, ge=0, description="Commit waves")
    credits_deducted: bool = Field(default=False, description="Credits deducted by this run")
    skipped: bool = Field(default=False, description="Project was already terminal")
