"""Ingestion pipeline wiring.

This module provides the IngestionPipeline class, which builds every
pipeline component from a record store and the collaborator services and
registers the pipeline functions on an event bus. The API constructs one
pipeline at startup; tests construct one per case with fakes.
"""

import structlog

from core.store import CommitProcessingStatus, Project, RecordStore

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
from .events import CommitProcessRequested, ProjectCreationRequested
from .functions import ReleaseRecorder, build_functions, register_functions
from .models import CommitInfo, PipelineConfig
from .reindex import DeltaReindexer
from .steps import LocalEventBus
from .waves import CommitWaveScheduler

logger = structlog.get_logger(__name__)


class IngestionPipeline:
    """All pipeline components bound to one store and one event bus.

    Attributes:
        config: Pipeline limits.
        store: Record store.
        bus: Event bus the pipeline functions are registered on.
        batch_processor: File indexing.
        scheduler: Commit wave dispatch.
        commit_processor: Commit jobs.
        reindexer: Delta reindexing.
        coordinator: Project ingestion driver.
    """

    def __init__(
        self,
        store: RecordStore,
        lister: RepoLister,
        file_summarizer: FileSummarizer,
        embedder: Embedder,
        diff_fetcher: CommitDiffFetcher,
        commit_summarizer: CommitSummarizer,
        file_source: RepoFileSource,
        config: PipelineConfig | None = None,
        bus: LocalEventBus | None = None,
        concurrency: dict[str, int] | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            store: Record store.
            lister: Repository file and commit listing.
            file_summarizer: File summarizer.
            embedder: Text embedder.
            diff_fetcher: Commit diff source.
            commit_summarizer: Commit summarizer.
            file_source: Upstream single-file access.
            config: Pipeline limits.
            bus: Event bus. A new LocalEventBus is created if omitted.
            concurrency: Per-function concurrency overrides.
        """
        self.config = config or PipelineConfig()
        self.store = store
        self.bus = bus or LocalEventBus()

        self.batch_processor = FileBatchProcessor(store, file_summarizer, embedder, self.config)
        self.scheduler = CommitWaveScheduler(store, self.config)
        self.commit_processor = CommitProcessor(
            store, diff_fetcher, commit_summarizer, self.config
        )
        self.reindexer = DeltaReindexer(store, file_source, self.batch_processor, self.config)
        self.coordinator = ProjectIngestionCoordinator(
            store, lister, self.batch_processor, self.scheduler
        )
        self.release_recorder = ReleaseRecorder(store)

        register_functions(
            self.bus,
            build_functions(
                self.coordinator,
                self.commit_processor,
                self.reindexer,
                self.release_recorder,
                concurrency,
            ),
        )
        logger.debug("ingestion_pipeline_initialized", config=self.config.model_dump())

    async def create_project(
        self,
        project_id: str,
        repo_url: str,
        user_id: str,
        token: str | None = None,
        file_count: int = 0,
    ) -> Project:
        """Create a project row and request its ingestion.

        Returns:
            The project as stored (INITIALIZING for a new project).
        """
        project = await self.store.create_project(
            Project(id=project_id, repo_url=repo_url, user_id=user_id)
        )
        await self.bus.send(
            ProjectCreationRequested(
                project_id=project_id,
                repo_url=repo_url,
                user_id=user_id,
                token=token,
                file_count=file_count,
            )
        )
        logger.info("project_creation_requested", project_id=project_id, repo_url=repo_url)
        return project

    async def retry_commit(self, project_id: str, commit_hash: str) -> bool:
        """Re-dispatch a FAILED or stuck PROCESSING commit.

        Returns:
            False if the commit does not exist or already COMPLETED.
        """
        project = await self.store.require_project(project_id)
        commit = await self.store.get_commit(project_id, commit_hash)
        if commit is None or commit.processing_status == CommitProcessingStatus.COMPLETED:
            return False

        await self.bus.send(
            CommitProcessRequested(
                project_id=project_id,
                repo_url=project.repo_url,
                commit=CommitInfo(
                    commit_hash=commit.commit_hash,
                    message=commit.message,
                    author_name=commit.author_name,
                    author_avatar=commit.author_avatar,
                    date=commit.date,
                ),
            )
        )
        logger.info("commit_retry_requested", project_id=project_id, commit=commit_hash[:8])
        return True
