"""Top-level project ingestion driver.

The coordinator owns the project status state machine:

    INITIALIZING -> LOADING_REPO -> INDEXING_REPO -> POLLING_COMMITS
        -> DEDUCTING_CREDITS -> COMPLETED

with FAILED reachable from any non-terminal state. Every phase is a named
step, so a retried delivery skips the phases that already finished. The
project is marked COMPLETED as soon as commit jobs have been dispatched;
commit summaries are enrichment and finish in the background.
"""

import structlog

from core.store import (
    InvalidStatusTransitionError,
    Project,
    ProjectStatus,
    RecordStore,
    RecordStoreError,
)

from .batch import FileBatchProcessor
from .collaborators import RepoLister
from .events import ProjectCreationRequested
from .models import Document, IngestionResult, WaveSchedule
from .steps import StepRunner
from .waves import CommitWaveScheduler

logger = structlog.get_logger(__name__)


def credit_reference(project_id: str) -> str:
    """Ledger reference used for a project's ingestion charge."""
    return f"project:{project_id}"


class ProjectIngestionCoordinator:
    """Drives a project from creation to COMPLETED or FAILED."""

    def __init__(
        self,
        store: RecordStore,
        lister: RepoLister,
        batch_processor: FileBatchProcessor,
        scheduler: CommitWaveScheduler,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Record store.
            lister: Repository file and commit listing.
            batch_processor: File indexing.
            scheduler: Commit wave dispatch.
        """
        self.store = store
        self.lister = lister
        self.batch_processor = batch_processor
        self.scheduler = scheduler
        self._logger = logger.bind(component="ingestion_coordinator")

    async def advance(self, project_id: str, status: ProjectStatus) -> Project:
        """Move a project forward to ``status``.

        A project that is already at or past ``status`` is left unchanged,
        which keeps replayed phases from moving the status backwards.
        """
        project = await self.store.require_project(project_id)
        if project.status == status or project.status.is_past(status):
            return project
        return await self.store.set_project_status(project_id, status)

    async def load_repository(self, event: ProjectCreationRequested) -> list[Document]:
        """List repository files and record the total."""
        await self.advance(event.project_id, ProjectStatus.LOADING_REPO)
        documents = await self.lister.list_files(event.repo_url, event.token)

        project = await self.store.require_project(event.project_id)
        resumable = (
            project.status.is_past(ProjectStatus.LOADING_REPO)
            and project.total_files == len(documents)
        )
        if not resumable:
            await self.store.reset_progress(event.project_id, len(documents))

        await self.advance(event.project_id, ProjectStatus.INDEXING_REPO)
        self._logger.info(
            "repository_loaded", project_id=event.project_id, total_files=len(documents)
        )
        return documents

    async def queue_commits(
        self, event: ProjectCreationRequested, steps: StepRunner
    ) -> WaveSchedule:
        """List recent commits and dispatch the unprocessed ones in waves."""
        await self.advance(event.project_id, ProjectStatus.POLLING_COMMITS)
        commits = await self.lister.list_commits(event.repo_url)
        return await self.scheduler.schedule(event.project_id, event.repo_url, commits, steps)

    async def deduct_credits(self, event: ProjectCreationRequested) -> bool:
        """Charge the user for the project's files, at most once.

        Returns:
            True if this call applied the deduction.
        """
        project = await self.store.require_project(event.project_id)
        if project.status.is_past(ProjectStatus.DEDUCTING_CREDITS):
            return False

        await self.advance(event.project_id, ProjectStatus.DEDUCTING_CREDITS)
        applied = await self.store.deduct_credits(
            event.user_id, project.total_files, credit_reference(event.project_id)
        )
        self._logger.info(
            "credits_charged" if applied else "credits_already_charged",
            project_id=event.project_id,
            user_id=event.user_id,
            amount=project.total_files,
        )
        return applied

    async def mark_failed(self, project_id: str) -> None:
        try:
            await self.store.set_project_status(project_id, ProjectStatus.FAILED)
        except (InvalidStatusTransitionError, RecordStoreError) as e:
            self._logger.error("mark_failed_failed", project_id=project_id, error=str(e))

    async def run(self, event: ProjectCreationRequested, steps: StepRunner) -> IngestionResult:
        """Ingest a project end to end.

        Args:
            event: The creation request.
            steps: Step runner of the current delivery.

        Returns:
            Final status and counters.

        Raises:
            Exception: Any fatal error, after the project has been marked
                FAILED on the final attempt.
        """
        project_id = event.project_id
        project = await self.store.require_project(project_id)
        if project.status.is_terminal:
            self._logger.info(
                "ingestion_skipped_terminal", project_id=project_id, status=project.status.value
            )
            return IngestionResult(
                project_id=project_id,
                status=project.status,
                total_files=project.total_files,
                processed_files=project.processed_files,
                skipped=True,
            )

        try:
            documents = await steps.run("load-github-repo", lambda: self.load_repository(event))
            batches = await self.batch_processor.run(project_id, documents, steps)
            schedule = await steps.run(
                "queue-commit-processing", lambda: self.queue_commits(event, steps)
            )
            charged = await steps.run("deduct-credits", lambda: self.deduct_credits(event))
            final = await steps.run(
                "mark-completed", lambda: self.advance(project_id, ProjectStatus.COMPLETED)
            )
        except Exception as e:
            self._logger.error(
                "ingestion_failed",
                project_id=project_id,
                attempt=steps.attempt,
                final_attempt=steps.is_final_attempt,
                error=str(e),
            )
            if steps.is_final_attempt:
                await steps.run("mark-failed", lambda: self.mark_failed(project_id))
            raise

        self._logger.info(
            "ingestion_completed",
            project_id=project_id,
            total_files=final.total_files,
            commits_dispatched=schedule.total_commits,
        )
        return IngestionResult(
            project_id=project_id,
            status=final.status,
            total_files=final.total_files,
            processed_files=final.processed_files,
            batches=len(batches),
            commits_dispatched=schedule.total_commits,
            total_waves=schedule.total_waves,
            credits_deducted=charged,
        )
