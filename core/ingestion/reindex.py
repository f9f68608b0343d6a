"""Delta reindexing of changed files.

Pushes, merged pull requests and manual requests name an explicit set of
changed paths. Each path is checked upstream: files that no longer exist
lose their embedding row, files that still exist are re-summarized and
upserted through the same ``index_document`` used by full ingestion. One
summary entry per run is appended to the project's processing logs.
"""

import functools
import re

import structlog

from core.store import RecordStore

from .batch import FileBatchProcessor
from .collaborators import RepoFileSource
from .events import FilesReindexRequested, SmartReindexRequested
from .models import (
    Document,
    FileOutcomeStatus,
    PipelineConfig,
    ReindexOutcome,
    ReindexStatus,
    ReindexSummary,
)
from .steps import StepRunner

logger = structlog.get_logger(__name__)

REINDEX_LOG = "reindex"

SIGNIFICANT_PATTERNS = [
    re.compile(p)
    for p in (
        r"package\.json$",
        r"package-lock\.json$",
        r"yarn\.lock$",
        r"pnpm-lock\.yaml$",
        r"Dockerfile$",
        r"docker-compose\.ya?ml$",
        r"\.env",
        r"tsconfig\.json$",
        r"tailwind\.config\.",
        r"next\.config\.",
        r"prisma/schema\.prisma$",
        r"src/.*\.(ts|tsx|js|jsx)$",
    )
]
SIGNIFICANT_FILE_COUNT = 10


def is_significant_change(changed_files: list[str]) -> bool:
    """Whether a change set warrants a smart reindex.

    Manifests, lockfiles, container and build config, the schema, and
    application sources are significant, as is any change touching more
    than ``SIGNIFICANT_FILE_COUNT`` files.
    """
    if len(changed_files) > SIGNIFICANT_FILE_COUNT:
        return True
    return any(p.search(path) for path in changed_files for p in SIGNIFICANT_PATTERNS)


class DeltaReindexer:
    """Reindexes or removes an explicit set of changed files."""

    def __init__(
        self,
        store: RecordStore,
        source: RepoFileSource,
        batch_processor: FileBatchProcessor,
        config: PipelineConfig | None = None,
    ) -> None:
        """Initialize the reindexer.

        Args:
            store: Record store.
            source: Upstream file existence and content.
            batch_processor: Provides the shared ``index_document`` upsert.
            config: Pipeline limits.
        """
        self.store = store
        self.source = source
        self.batch_processor = batch_processor
        self.config = config or PipelineConfig()
        self._logger = logger.bind(component="delta_reindexer")

    async def reindex_file(self, project_id: str, repo_url: str, path: str) -> ReindexOutcome:
        """Reindex or remove a single path. Never raises."""
        try:
            if not await self.source.file_exists(repo_url, path):
                await self.store.delete_file_embedding(project_id, path)
                self._logger.info("file_removed", project_id=project_id, path=path)
                return ReindexOutcome(file=path, status=ReindexStatus.REMOVED)

            content = await self.source.get_file_content(repo_url, path)
            if content is None:
                return ReindexOutcome(file=path, status=ReindexStatus.SKIPPED)

            outcome = await self.batch_processor.index_document(
                project_id, Document(path=path, content=content)
            )
            if outcome.status == FileOutcomeStatus.SKIPPED:
                return ReindexOutcome(file=path, status=ReindexStatus.SKIPPED)
            return ReindexOutcome(file=path, status=ReindexStatus.REINDEXED)

        except Exception as e:
            self._logger.warning(
                "file_reindex_failed", project_id=project_id, path=path, error=str(e)
            )
            return ReindexOutcome(file=path, status=ReindexStatus.ERROR, error=str(e))

    async def reindex_files(
        self, project_id: str, repo_url: str, paths: list[str]
    ) -> list[ReindexOutcome]:
        """Reindex paths one after another."""
        return [await self.reindex_file(project_id, repo_url, path) for path in paths]

    async def run(
        self,
        project_id: str,
        repo_url: str,
        files: list[str],
        reason: str,
        steps: StepRunner,
        commit_hash: str | None = None,
    ) -> ReindexSummary:
        """Reindex ``files`` in batches and append a processing log entry.

        Args:
            project_id: Target project.
            repo_url: Repository URL.
            files: Changed paths; duplicates are processed once.
            reason: Trigger reason recorded in the log.
            steps: Step runner of the current delivery.
            commit_hash: Triggering commit, if any.

        Returns:
            Per-path outcomes and counts.
        """
        paths = list(dict.fromkeys(files))
        size = self.config.reindex_batch_size
        batches = [paths[i : i + size] for i in range(0, len(paths), size)]
        results: list[ReindexOutcome] = []

        for index, batch in enumerate(batches):
            outcomes = await steps.run(
                f"reindex-file-batch-{index}",
                functools.partial(self.reindex_files, project_id, repo_url, batch),
            )
            results.extend(outcomes)
            if index < len(batches) - 1:
                await steps.sleep(
                    f"reindex-batch-delay-{index}", self.config.reindex_batch_delay_seconds
                )

        summary = ReindexSummary(
            project_id=project_id,
            reason=reason,
            commit_hash=commit_hash,
            changed_files=paths,
            results=results,
        )

        async def update_logs() -> None:
            await self.store.append_processing_log(project_id, REINDEX_LOG, summary.to_log_entry())

        await steps.run("update-logs", update_logs)

        self._logger.info(
            "reindex_completed",
            project_id=project_id,
            reason=reason,
            reindexed=summary.count(ReindexStatus.REINDEXED),
            removed=summary.count(ReindexStatus.REMOVED),
            skipped=summary.count(ReindexStatus.SKIPPED),
            errors=summary.count(ReindexStatus.ERROR),
        )
        return summary

    async def run_file_changes(
        self, event: FilesReindexRequested, steps: StepRunner
    ) -> ReindexSummary:
        """Handle ``project.files.reindex.requested``."""
        return await self.run(event.project_id, event.repo_url, event.files, event.reason, steps)

    async def run_smart_reindex(
        self, event: SmartReindexRequested, steps: StepRunner
    ) -> ReindexSummary | None:
        """Handle ``project.smart.reindex.requested``.

        Returns:
            None if the project is archived.

        Raises:
            ProjectNotFoundError: If the project does not exist.
        """

        async def validate() -> bool:
            project = await self.store.require_project(event.project_id)
            return not project.is_archived

        if not await steps.run("validate-project", validate):
            self._logger.info("reindex_skipped_archived", project_id=event.project_id)
            return None

        return await self.run(
            event.project_id,
            event.repo_url,
            event.changed_files,
            event.reason,
            steps,
            commit_hash=event.commit_hash,
        )
