"""Ingestion module for repository indexing and incremental reindexing.

This module provides the resumable project ingestion pipeline: batched file
summarization and embedding with progress checkpoints, commit history
processing in time-staggered waves, and delta reindexing of changed files.
Work is expressed as named steps on an injected step substrate.

Example:
    >>> from core.ingestion import IngestionPipeline
    >>> pipeline = IngestionPipeline(store, lister, summarizer, embedder,
    ...                              diff_fetcher, summarizer, file_source)
    >>> await pipeline.create_project("p1", "https://github.com/o/r", "u1")
    >>> await pipeline.bus.drain()
"""

from .batch import FileBatchProcessor
from .collaborators import (
    CommitDiffFetcher,
    CommitSummarizer,
    Embedder,
    FileSummarizer,
    RepoFileSource,
    RepoLister,
)
from .commits import CommitProcessor
from .coordinator import ProjectIngestionCoordinator
from .events import (
    CommitProcessRequested,
    EventValidationError,
    FilesReindexRequested,
    PipelineEvent,
    ProjectCreationRequested,
    ReleaseAnalysisRequested,
    SmartReindexRequested,
    parse_event,
)
from .functions import ReleaseRecorder, build_functions, register_functions
from .models import (
    BatchResult,
    CommitInfo,
    CommitJob,
    CommitResult,
    Document,
    FileOutcome,
    FileOutcomeStatus,
    IngestionResult,
    PipelineConfig,
    PipelineError,
    ReindexOutcome,
    ReindexStatus,
    ReindexSummary,
    WaveSchedule,
)
from .pipeline import IngestionPipeline
from .reindex import DeltaReindexer, is_significant_change
from .steps import (
    ConcurrencyLimit,
    FunctionSpec,
    LocalEventBus,
    LocalStepRunner,
    StepRunner,
)
from .waves import CommitWaveScheduler

__all__ = [
    # Pipeline
    "IngestionPipeline",
    "ProjectIngestionCoordinator",
    "FileBatchProcessor",
    "CommitWaveScheduler",
    "CommitProcessor",
    "DeltaReindexer",
    "ReleaseRecorder",
    "is_significant_change",
    # Step substrate
    "StepRunner",
    "LocalStepRunner",
    "LocalEventBus",
    "FunctionSpec",
    "ConcurrencyLimit",
    "build_functions",
    "register_functions",
    # Events
    "PipelineEvent",
    "ProjectCreationRequested",
    "CommitProcessRequested",
    "FilesReindexRequested",
    "SmartReindexRequested",
    "ReleaseAnalysisRequested",
    "EventValidationError",
    "parse_event",
    # Collaborators
    "RepoLister",
    "FileSummarizer",
    "Embedder",
    "CommitDiffFetcher",
    "CommitSummarizer",
    "RepoFileSource",
    # Models
    "PipelineConfig",
    "PipelineError",
    "Document",
    "CommitInfo",
    "CommitJob",
    "WaveSchedule",
    "BatchResult",
    "FileOutcome",
    "FileOutcomeStatus",
    "CommitResult",
    "ReindexOutcome",
    "ReindexStatus",
    "ReindexSummary",
    "IngestionResult",
]
