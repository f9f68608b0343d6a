"""Batched file summarization and embedding.

The FileBatchProcessor walks a repository file list in fixed-size batches.
Each batch is one memoized step: its files are summarized, embedded and
upserted concurrently, and the project's progress is checkpointed once the
batch is done. A failing file is recorded and skipped; it never fails the
batch or the project.
"""

import asyncio
import functools

import structlog

from core.store import FileEmbedding, RecordStore

from .collaborators import Embedder, FileSummarizer
from .models import BatchResult, Document, FileOutcome, FileOutcomeStatus, PipelineConfig
from .steps import StepRunner

logger = structlog.get_logger(__name__)


class FileBatchProcessor:
    """Indexes repository documents batch by batch with progress checkpoints."""

    def __init__(
        self,
        store: RecordStore,
        summarizer: FileSummarizer,
        embedder: Embedder,
        config: PipelineConfig | None = None,
    ) -> None:
        """Initialize the processor.

        Args:
            store: Record store for embeddings and progress.
            summarizer: File summarizer.
            embedder: Text embedder.
            config: Pipeline limits.
        """
        self.store = store
        self.summarizer = summarizer
        self.embedder = embedder
        self.config = config or PipelineConfig()
        self._logger = logger.bind(component="file_batch_processor")

    def plan_batches(self, total: int) -> list[tuple[int, int]]:
        """Split ``total`` files into ``(start, end)`` index ranges.

        Args:
            total: Number of files.

        Returns:
            Consecutive ranges of at most ``file_batch_size`` files.
        """
        size = self.config.file_batch_size
        return [(start, min(start + size, total)) for start in range(0, total, size)]

    async def index_document(self, project_id: str, document: Document) -> FileOutcome:
        """Summarize, embed and upsert a single document.

        Args:
            project_id: Owning project.
            document: File to index.

        Returns:
            INDEXED, or SKIPPED when the summary is blank.

        Raises:
            Exception: Summarizer, embedder or store failures propagate.
        """
        summary = await self.summarizer.summarize_file(document)
        if not summary or not summary.strip():
            self._logger.info(
                "file_skipped_empty_summary", project_id=project_id, path=document.path
            )
            return FileOutcome(path=document.path, status=FileOutcomeStatus.SKIPPED)

        embedding = await self.embedder.embed_text(summary)
        await self.store.upsert_file_embedding(
            FileEmbedding(
                project_id=project_id,
                file_name=document.path,
                source_code=document.content,
                summary=summary,
                embedding=embedding,
            )
        )
        return FileOutcome(path=document.path, status=FileOutcomeStatus.INDEXED)

    async def _index_isolated(self, project_id: str, document: Document) -> FileOutcome:
        try:
            return await self.index_document(project_id, document)
        except Exception as e:
            self._logger.warning(
                "file_index_failed",
                project_id=project_id,
                path=document.path,
                error=str(e),
            )
            return FileOutcome(path=document.path, status=FileOutcomeStatus.FAILED, error=str(e))

    async def process_batch(
        self,
        project_id: str,
        documents: list[Document],
        batch_index: int,
        start: int,
    ) -> BatchResult:
        """Index one batch and checkpoint progress.

        Args:
            project_id: Owning project.
            documents: Files in this batch.
            batch_index: Zero-based batch number.
            start: Index of the first file of the batch in the full list.

        Returns:
            Per-file outcomes of the batch.
        """
        end = start + len(documents)
        outcomes = await asyncio.gather(
            *(self._index_isolated(project_id, doc) for doc in documents)
        )
        await self.store.record_progress(project_id, end)

        result = BatchResult(batch_index=batch_index, start=start, end=end, outcomes=list(outcomes))
        self._logger.info(
            "file_batch_processed",
            project_id=project_id,
            batch_index=batch_index,
            processed_files=end,
            indexed=result.count(FileOutcomeStatus.INDEXED),
            skipped=result.count(FileOutcomeStatus.SKIPPED),
            failed=result.count(FileOutcomeStatus.FAILED),
        )
        return result

    async def run(
        self,
        project_id: str,
        documents: list[Document],
        steps: StepRunner,
    ) -> list[BatchResult]:
        """Process every batch, resuming after the last checkpoint.

        Batches already covered by the project's ``processed_files`` are not
        reprocessed, so a restarted run continues where the previous one
        stopped even without step memoization.

        Args:
            project_id: Owning project.
            documents: Full file list from the repository listing.
            steps: Step runner of the current delivery.

        Returns:
            One result per batch, in order.
        """
        project = await self.store.require_project(project_id)
        checkpoint = project.processed_files
        batches = self.plan_batches(len(documents))
        results: list[BatchResult] = []

        for index, (start, end) in enumerate(batches):
            if end <= checkpoint:
                results.append(BatchResult(batch_index=index, start=start, end=end, resumed=True))
                continue

            result = await steps.run(
                f"process-file-batch-{index}",
                functools.partial(
                    self.process_batch, project_id, documents[start:end], index, start
                ),
            )
            results.append(result)

            if index < len(batches) - 1:
                await steps.sleep(f"batch-delay-{index}", self.config.file_batch_delay_seconds)

        return results
