"""Tests for per-commit summarization jobs."""

import pytest

from core.ingestion import (
    CommitProcessor,
    CommitProcessRequested,
    LocalEventBus,
    LocalStepRunner,
    PipelineConfig,
)
from core.ingestion.commits import PLACEHOLDER_SUMMARY, is_usable_summary
from core.store import Commit, CommitProcessingStatus, InMemoryRecordStore
from tests.conftest import REPO_URL, FakeRepository, FakeSummarizer, RecordingSleeper, make_commits


class FlakyCommitStore(InMemoryRecordStore):
    """Store whose terminal commit writes fail."""

    def __init__(self, fail_fallback: bool = False) -> None:
        super().__init__()
        self.fail_fallback = fail_fallback

    async def upsert_commit(self, commit: Commit) -> Commit:
        status = commit.processing_status
        if status == CommitProcessingStatus.COMPLETED:
            raise RuntimeError("database unavailable")
        if status == CommitProcessingStatus.FAILED and self.fail_fallback:
            raise RuntimeError("still unavailable")
        return await super().upsert_commit(commit)


def _event(delay: float = 0.0, index: int = 0) -> CommitProcessRequested:
    commit = make_commits(1)[0]
    return CommitProcessRequested(
        project_id="p1",
        repo_url=REPO_URL,
        commit=commit,
        commit_index=index,
        delay_seconds=delay,
    )


def _processor(store, repository, summarizer, jitter: float = 0.0) -> CommitProcessor:
    return CommitProcessor(
        store, repository, summarizer, PipelineConfig(), jitter=lambda low, high: jitter
    )


@pytest.fixture
def steps(bus: LocalEventBus, sleeper: RecordingSleeper) -> LocalStepRunner:
    return LocalStepRunner(bus, {}, sleeper=sleeper)


class TestUsableSummary:
    """Tests for summary classification."""

    def test_plain_summary(self):
        assert is_usable_summary("Adds retry logic")

    def test_blank_or_failure_text(self):
        assert not is_usable_summary("")
        assert not is_usable_summary("   ")
        assert not is_usable_summary(None)
        assert not is_usable_summary("Failed to generate commit summary: timeout")


class TestCommitProcessor:
    """Tests for CommitProcessor.process."""

    @pytest.mark.asyncio
    async def test_successful_commit(
        self,
        store: InMemoryRecordStore,
        repository: FakeRepository,
        summarizer: FakeSummarizer,
        steps: LocalStepRunner,
    ):
        event = _event()

        result = await _processor(store, repository, summarizer).process(event, steps)

        assert result.status == CommitProcessingStatus.COMPLETED
        row = await store.get_commit("p1", event.commit.commit_hash)
        assert row.processing_status == CommitProcessingStatus.COMPLETED
        assert row.summary == f"Summary: +change in {event.commit.commit_hash}"
        assert row.message == event.commit.message

    @pytest.mark.asyncio
    async def test_waits_for_wave_and_jitter(
        self,
        store: InMemoryRecordStore,
        repository: FakeRepository,
        summarizer: FakeSummarizer,
        steps: LocalStepRunner,
        sleeper: RecordingSleeper,
    ):
        processor = _processor(store, repository, summarizer, jitter=1.5)

        await processor.process(_event(delay=40.0), steps)

        assert sleeper.calls == [40.0, 1.5]

    @pytest.mark.asyncio
    async def test_row_is_processing_before_summary(
        self,
        store: InMemoryRecordStore,
        repository: FakeRepository,
        summarizer: FakeSummarizer,
    ):
        event = _event()
        processor = _processor(store, repository, summarizer)

        row = await processor.mark_processing(event)

        assert row.processing_status == CommitProcessingStatus.PROCESSING
        assert row.summary == PLACEHOLDER_SUMMARY

    @pytest.mark.asyncio
    async def test_diff_failure_still_summarizes(
        self,
        store: InMemoryRecordStore,
        repository: FakeRepository,
        summarizer: FakeSummarizer,
        steps: LocalStepRunner,
    ):
        event = _event()
        repository.diff_errors.add(event.commit.commit_hash)

        result = await _processor(store, repository, summarizer).process(event, steps)

        assert summarizer.commit_calls == ["Unable to fetch commit diff"]
        assert result.status == CommitProcessingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_summarizer_error_marks_failed(
        self,
        store: InMemoryRecordStore,
        repository: FakeRepository,
        summarizer: FakeSummarizer,
        steps: LocalStepRunner,
    ):
        summarizer.commit_error = RuntimeError("x" * 300)

        result = await _processor(store, repository, summarizer).process(_event(), steps)

        assert result.status == CommitProcessingStatus.FAILED
        assert result.summary == "Processing failed: " + "x" * 100

    @pytest.mark.asyncio
    async def test_failure_text_marks_failed(
        self,
        store: InMemoryRecordStore,
        repository: FakeRepository,
        summarizer: FakeSummarizer,
        steps: LocalStepRunner,
    ):
        summarizer.commit_reply = "Failed to generate commit summary: rate limited"
        event = _event()

        result = await _processor(store, repository, summarizer).process(event, steps)

        assert result.status == CommitProcessingStatus.FAILED
        assert "Unable to generate AI summary" in result.summary
        assert event.commit.message in result.summary

    @pytest.mark.asyncio
    async def test_completed_commit_is_not_reprocessed(
        self,
        store: InMemoryRecordStore,
        repository: FakeRepository,
        summarizer: FakeSummarizer,
        steps: LocalStepRunner,
    ):
        event = _event()
        await store.upsert_commit(
            Commit(
                project_id="p1",
                commit_hash=event.commit.commit_hash,
                summary="done",
                processing_status=CommitProcessingStatus.COMPLETED,
            )
        )

        result = await _processor(store, repository, summarizer).process(event, steps)

        assert result.duplicate is True
        assert result.summary == "done"
        assert summarizer.commit_calls == []

    @pytest.mark.asyncio
    async def test_upsert_failure_falls_back_to_failed_row(
        self,
        repository: FakeRepository,
        summarizer: FakeSummarizer,
        steps: LocalStepRunner,
    ):
        store = FlakyCommitStore()
        event = _event()

        result = await _processor(store, repository, summarizer).process(event, steps)

        assert result.status == CommitProcessingStatus.FAILED
        row = await store.get_commit("p1", event.commit.commit_hash)
        assert row.processing_status == CommitProcessingStatus.FAILED
        assert "database unavailable" in row.summary

    @pytest.mark.asyncio
    async def test_fallback_failure_propagates(
        self,
        repository: FakeRepository,
        summarizer: FakeSummarizer,
        steps: LocalStepRunner,
    ):
        store = FlakyCommitStore(fail_fallback=True)

        with pytest.raises(RuntimeError, match="database unavailable"):
            await _processor(store, repository, summarizer).process(_event(), steps)
