"""Per-commit summarization jobs.

A commit row moves ``PROCESSING -> COMPLETED | FAILED``. Diff and
summarizer failures are recorded on the row rather than raised, so one bad
commit never affects the rest of its wave and no row is left stuck in
PROCESSING.
"""

import functools
import random
from collections.abc import Callable

import structlog

from core.store import Commit, CommitProcessingStatus, RecordStore

from .collaborators import CommitDiffFetcher, CommitSummarizer
from .events import CommitProcessRequested
from .models import CommitResult, PipelineConfig
from .steps import StepRunner

logger = structlog.get_logger(__name__)

PLACEHOLDER_SUMMARY = "Processing in progress..."
DIFF_UNAVAILABLE = "Unable to fetch commit diff"
SUMMARY_FAILURE_MARKER = "Failed to"


def failure_summary(detail: str, limit: int) -> str:
    """Format a stored failure diagnostic, truncating ``detail`` to ``limit``."""
    return f"Processing failed: {detail[:limit]}"


def is_usable_summary(summary: str | None) -> bool:
    """Whether a summarizer result counts as a successful summary."""
    return bool(summary and summary.strip()) and SUMMARY_FAILURE_MARKER not in summary


class CommitProcessor:
    """Fetches, summarizes and persists a single commit."""

    def __init__(
        self,
        store: RecordStore,
        diff_fetcher: CommitDiffFetcher,
        summarizer: CommitSummarizer,
        config: PipelineConfig | None = None,
        jitter: Callable[[float, float], float] = random.uniform,
    ) -> None:
        """Initialize the processor.

        Args:
            store: Record store for commit rows.
            diff_fetcher: Source of commit diffs.
            summarizer: Commit summarizer.
            config: Pipeline limits.
            jitter: ``jitter(low, high)`` random delay generator.
        """
        self.store = store
        self.diff_fetcher = diff_fetcher
        self.summarizer = summarizer
        self.config = config or PipelineConfig()
        self._jitter = jitter
        self._logger = logger.bind(component="commit_processor")

    def _row(
        self, event: CommitProcessRequested, summary: str, status: CommitProcessingStatus
    ) -> Commit:
        commit = event.commit
        return Commit(
            project_id=event.project_id,
            commit_hash=commit.commit_hash,
            message=commit.message,
            author_name=commit.author_name,
            author_avatar=commit.author_avatar,
            date=commit.date,
            summary=summary,
            processing_status=status,
        )

    async def mark_processing(self, event: CommitProcessRequested) -> Commit:
        """Move the commit row to PROCESSING unless it already COMPLETED.

        Returns:
            The stored row. A COMPLETED row is returned untouched.
        """
        existing = await self.store.get_commit(event.project_id, event.commit.commit_hash)
        if existing is not None and existing.processing_status == CommitProcessingStatus.COMPLETED:
            return existing
        return await self.store.upsert_commit(
            self._row(event, PLACEHOLDER_SUMMARY, CommitProcessingStatus.PROCESSING)
        )

    async def summarize(self, event: CommitProcessRequested) -> tuple[str, CommitProcessingStatus]:
        """Fetch the diff and summarize it without raising.

        Returns:
            The summary to store and the resulting status.
        """
        commit = event.commit
        limit = self.config.failure_message_limit

        try:
            diff = await self.diff_fetcher.fetch_commit_diff(event.repo_url, commit.commit_hash)
        except Exception as e:
            self._logger.warning("commit_diff_failed", commit=commit.commit_hash[:8], error=str(e))
            diff = DIFF_UNAVAILABLE

        try:
            summary = await self.summarizer.summarize_commit(diff)
        except Exception as e:
            self._logger.warning(
                "commit_summary_failed", commit=commit.commit_hash[:8], error=str(e)
            )
            detail = str(e) or "summary generation failed"
            return failure_summary(detail, limit), CommitProcessingStatus.FAILED

        if is_usable_summary(summary):
            return summary, CommitProcessingStatus.COMPLETED

        label = commit.message or commit.commit_hash[:8]
        return (
            failure_summary(f"Unable to generate AI summary for commit {label}", limit),
            CommitProcessingStatus.FAILED,
        )

    async def complete(self, event: CommitProcessRequested) -> CommitResult:
        """Summarize the commit and write its terminal row.

        Raises:
            Exception: Only if both the final upsert and the fallback FAILED
                upsert fail; the final upsert's error is raised.
        """
        summary, status = await self.summarize(event)
        commit_hash = event.commit.commit_hash

        try:
            stored = await self.store.upsert_commit(self._row(event, summary, status))
        except Exception as e:
            self._logger.error("commit_upsert_failed", commit=commit_hash[:8], error=str(e))
            fallback = failure_summary(str(e), self.config.failure_message_limit)
            try:
                await self.store.upsert_commit(
                    self._row(event, fallback, CommitProcessingStatus.FAILED)
                )
            except Exception as fallback_error:
                self._logger.error(
                    "commit_fallback_upsert_failed",
                    commit=commit_hash[:8],
                    error=str(fallback_error),
                )
                raise e
            return CommitResult(
                project_id=event.project_id,
                commit_hash=commit_hash,
                status=CommitProcessingStatus.FAILED,
                summary=fallback,
            )

        self._logger.info(
            "commit_processed",
            project_id=event.project_id,
            commit=commit_hash[:8],
            wave_index=event.wave_index,
            status=stored.processing_status.value,
        )
        return CommitResult(
            project_id=event.project_id,
            commit_hash=commit_hash,
            status=stored.processing_status,
            summary=stored.summary,
        )

    async def process(self, event: CommitProcessRequested, steps: StepRunner) -> CommitResult:
        """Run one commit job.

        Args:
            event: The commit job.
            steps: Step runner of the current delivery.

        Returns:
            The terminal outcome, or the existing row for a duplicate delivery.
        """
        marked = await steps.run("mark-processing", functools.partial(self.mark_processing, event))
        if marked.processing_status == CommitProcessingStatus.COMPLETED:
            self._logger.info(
                "commit_already_completed",
                project_id=event.project_id,
                commit=event.commit.commit_hash[:8],
            )
            return CommitResult(
                project_id=event.project_id,
                commit_hash=marked.commit_hash,
                status=marked.processing_status,
                summary=marked.summary,
                duplicate=True,
            )

        if event.delay_seconds > 0:
            await steps.sleep("wave-delay", event.delay_seconds)

        jitter = self._jitter(0, self.config.commit_jitter_seconds)
        if jitter > 0:
            await steps.sleep("random-delay", jitter)

        return await steps.run("process-commit", functools.partial(self.complete, event))
