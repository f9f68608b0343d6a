"""End-to-end tests for project ingestion and the pipeline functions."""

import asyncio

import pytest

from core.ingestion import (
    IngestionPipeline,
    IngestionResult,
    LocalEventBus,
    ProjectCreationRequested,
    ReleaseAnalysisRequested,
)
from core.ingestion.coordinator import credit_reference
from core.store import (
    Commit,
    CommitProcessingStatus,
    InMemoryRecordStore,
    Project,
    ProjectStatus,
)
from tests.conftest import REPO_URL, FakeRepository, FakeSummarizer, make_commits


class FlakyCommitListing(FakeRepository):
    """Repository whose first commit listing fails."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.commit_list_calls = 0

    async def list_commits(self, repo_url: str):
        self.commit_list_calls += 1
        if self.commit_list_calls == 1:
            raise RuntimeError("GitHub API rate limit exceeded")
        return await super().list_commits(repo_url)


class StatusHistoryStore(InMemoryRecordStore):
    """In-memory store that remembers every status a project moved through."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.history: list[ProjectStatus] = []

    async def set_project_status(self, project_id: str, status: ProjectStatus) -> Project:
        project = await super().set_project_status(project_id, status)
        self.history.append(status)
        return project


class GatedSummarizer(FakeSummarizer):
    """Summarizer whose commit summaries wait until the gate opens."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def summarize_commit(self, diff: str) -> str:
        await self.gate.wait()
        return await super().summarize_commit(diff)


def _request(project: Project) -> ProjectCreationRequested:
    return ProjectCreationRequested(
        project_id=project.id, repo_url=project.repo_url, user_id=project.user_id
    )


class TestProjectIngestion:
    """Tests for a full ingestion run."""

    @pytest.mark.asyncio
    async def test_end_to_end(
        self, make_pipeline, store: InMemoryRecordStore, bus: LocalEventBus
    ):
        pipeline: IngestionPipeline = make_pipeline()

        created = await pipeline.create_project("proj-9", REPO_URL, "user-1")
        await bus.drain()

        assert created.status == ProjectStatus.INITIALIZING
        project = await store.require_project("proj-9")
        assert project.status == ProjectStatus.COMPLETED
        assert project.total_files == 7
        assert project.processed_files == 7
        assert len(await store.list_file_names("proj-9")) == 7
        assert await store.get_credits("user-1") == 93

        commits = await store.list_commits("proj-9")
        assert len(commits) == 5
        assert all(c.processing_status == CommitProcessingStatus.COMPLETED for c in commits)

        [delivery] = bus.deliveries_for("process-project-creation")
        result: IngestionResult = delivery.result
        assert result.batches == 4
        assert result.commits_dispatched == 5
        assert result.total_waves == 2
        assert result.credits_deducted is True
        assert len(bus.deliveries_for("process-single-commit")) == 5

    @pytest.mark.asyncio
    async def test_completes_before_commit_jobs_finish(
        self, make_pipeline, repository: FakeRepository
    ):
        """The project reaches COMPLETED while its commit jobs are still running."""
        store = StatusHistoryStore(credits={"user-1": 100})
        summarizer = GatedSummarizer()
        pipeline: IngestionPipeline = make_pipeline(
            store=store, file_summarizer=summarizer, commit_summarizer=summarizer
        )
        project = await store.create_project(
            Project(id="proj-1", repo_url=REPO_URL, user_id="user-1")
        )

        await pipeline.bus.invoke("process-project-creation", _request(project))

        assert (await store.require_project(project.id)).status == ProjectStatus.COMPLETED
        assert store.history == [
            ProjectStatus.LOADING_REPO,
            ProjectStatus.INDEXING_REPO,
            ProjectStatus.POLLING_COMMITS,
            ProjectStatus.DEDUCTING_CREDITS,
            ProjectStatus.COMPLETED,
        ]
        pending = await store.list_commits(project.id)
        assert all(c.processing_status != CommitProcessingStatus.COMPLETED for c in pending)

        summarizer.gate.set()
        await pipeline.bus.drain()

        commits = await store.list_commits(project.id)
        assert len(commits) == 5
        assert all(c.processing_status == CommitProcessingStatus.COMPLETED for c in commits)

    @pytest.mark.asyncio
    async def test_known_commits_not_redispatched(
        self, make_pipeline, store: InMemoryRecordStore, bus: LocalEventBus, project: Project
    ):
        make_pipeline()
        commits = make_commits(5)
        await store.upsert_commit(
            Commit(
                project_id=project.id,
                commit_hash=commits[0].commit_hash,
                processing_status=CommitProcessingStatus.FAILED,
            )
        )

        result = await bus.invoke("process-project-creation", _request(project))
        await bus.drain()

        assert result.commits_dispatched == 4

    @pytest.mark.asyncio
    async def test_listing_failure_marks_failed_on_final_attempt(
        self,
        make_pipeline,
        store: InMemoryRecordStore,
        repository: FakeRepository,
        bus: LocalEventBus,
        project: Project,
    ):
        make_pipeline()
        repository.list_error = RuntimeError("repository not found")

        with pytest.raises(RuntimeError, match="repository not found"):
            await bus.invoke("process-project-creation", _request(project))

        assert repository.list_calls == 2
        assert (await store.require_project(project.id)).status == ProjectStatus.FAILED
        assert await store.get_credits("user-1") == 100

    @pytest.mark.asyncio
    async def test_commit_listing_failure_is_fatal(
        self,
        make_pipeline,
        store: InMemoryRecordStore,
        repository: FakeRepository,
        bus: LocalEventBus,
        project: Project,
    ):
        make_pipeline()
        repository.commit_list_error = RuntimeError("commits unavailable")

        with pytest.raises(RuntimeError):
            await bus.invoke("process-project-creation", _request(project))

        stored = await store.require_project(project.id)
        assert stored.status == ProjectStatus.FAILED
        assert stored.processed_files == 7

    @pytest.mark.asyncio
    async def test_retry_resumes_after_completed_steps(
        self,
        make_pipeline,
        store: InMemoryRecordStore,
        summarizer: FakeSummarizer,
        bus: LocalEventBus,
        project: Project,
    ):
        files = {f"src/file_{i}.py": f"print({i})" for i in range(7)}
        flaky = FlakyCommitListing(files=files, commits=make_commits(3))
        make_pipeline(lister=flaky)

        result = await bus.invoke("process-project-creation", _request(project))
        await bus.drain()

        assert result.status == ProjectStatus.COMPLETED
        assert flaky.list_calls == 1
        assert len(summarizer.file_calls) == 7
        assert bus.deliveries_for("process-project-creation")[0].attempts == 2

    @pytest.mark.asyncio
    async def test_resumes_from_progress_checkpoint(
        self,
        make_pipeline,
        store: InMemoryRecordStore,
        summarizer: FakeSummarizer,
        bus: LocalEventBus,
        project: Project,
    ):
        make_pipeline()
        await store.set_project_status(project.id, ProjectStatus.INDEXING_REPO)
        await store.reset_progress(project.id, 7)
        await store.record_progress(project.id, 4)

        result = await bus.invoke("process-project-creation", _request(project))
        await bus.drain()

        assert result.status == ProjectStatus.COMPLETED
        assert summarizer.file_calls == ["src/file_4.py", "src/file_5.py", "src/file_6.py"]

    @pytest.mark.asyncio
    async def test_terminal_project_is_skipped(
        self,
        make_pipeline,
        store: InMemoryRecordStore,
        repository: FakeRepository,
        bus: LocalEventBus,
        project: Project,
    ):
        make_pipeline()
        await store.set_project_status(project.id, ProjectStatus.COMPLETED)

        result = await bus.invoke("process-project-creation", _request(project))
        await bus.drain()

        assert result.skipped is True
        assert repository.list_calls == 0

    @pytest.mark.asyncio
    async def test_credits_charged_once(
        self, make_pipeline, store: InMemoryRecordStore, bus: LocalEventBus, project: Project
    ):
        make_pipeline()
        await store.deduct_credits("user-1", 7, credit_reference(project.id))

        result = await bus.invoke("process-project-creation", _request(project))
        await bus.drain()

        assert result.credits_deducted is False
        assert await store.get_credits("user-1") == 93


class TestPipelineOperations:
    """Tests for IngestionPipeline entry points."""

    @pytest.mark.asyncio
    async def test_retry_failed_commit(
        self, make_pipeline, store: InMemoryRecordStore, bus: LocalEventBus, project: Project
    ):
        pipeline: IngestionPipeline = make_pipeline()
        await store.upsert_commit(
            Commit(
                project_id=project.id,
                commit_hash="abc",
                message="fix",
                processing_status=CommitProcessingStatus.FAILED,
            )
        )

        assert await pipeline.retry_commit(project.id, "abc") is True
        await bus.drain()

        row = await store.get_commit(project.id, "abc")
        assert row.processing_status == CommitProcessingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_retry_completed_or_missing_commit(
        self, make_pipeline, store: InMemoryRecordStore, project: Project
    ):
        pipeline: IngestionPipeline = make_pipeline()
        await store.upsert_commit(
            Commit(
                project_id=project.id,
                commit_hash="abc",
                processing_status=CommitProcessingStatus.COMPLETED,
            )
        )

        assert await pipeline.retry_commit(project.id, "abc") is False
        assert await pipeline.retry_commit(project.id, "zzz") is False

    @pytest.mark.asyncio
    async def test_release_is_logged(
        self, make_pipeline, store: InMemoryRecordStore, bus: LocalEventBus, project: Project
    ):
        make_pipeline()
        event = ReleaseAnalysisRequested(
            project_id=project.id,
            repo_url=REPO_URL,
            release_action="published",
            release_name="First",
            release_tag="v1.0.0",
        )

        await bus.invoke("process-release", event)

        [entry] = (await store.require_project(project.id)).processing_logs["release"]
        assert entry["tag"] == "v1.0.0"
        assert entry["action"] == "published"

    def test_registered_functions(self, make_pipeline, bus: LocalEventBus):
        make_pipeline()

        specs = {spec.id: spec for spec in bus.functions}

        assert set(specs) == {
            "process-project-creation",
            "process-single-commit",
            "process-file-changes",
            "smart-reindex",
            "process-release",
        }
        assert specs["process-project-creation"].concurrency.key == "user_id"
        assert specs["process-single-commit"].retries == 2
        assert specs["process-single-commit"].concurrency.key is None
