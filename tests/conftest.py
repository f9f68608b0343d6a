"""Pytest configuration and shared fixtures.

This module provides in-memory fakes for every pipeline collaborator, a
recording sleeper so tests never wait on real delays, and a factory that
wires them into an IngestionPipeline. SimulatedClock drives tests that
assert on timing.
"""

import asyncio
import heapq
import itertools
from collections.abc import Callable

import pytest
import pytest_asyncio

from core.ingestion.collaborators import (
    CommitDiffFetcher,
    CommitSummarizer,
    Embedder,
    FileSummarizer,
    RepoFileSource,
    RepoLister,
)
from core.ingestion.models import CommitInfo, Document, PipelineConfig
from core.ingestion.pipeline import IngestionPipeline
from core.ingestion.steps import LocalEventBus
from core.store import InMemoryRecordStore, Project

REPO_URL = "https://github.com/acme/widgets"


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeRepository(RepoLister, CommitDiffFetcher, RepoFileSource):
    """Scripted upstream repository.

    Attributes:
        files: Current file contents by path.
        commits: Recent history, newest first.
        list_error: Raised by list_files when set.
        commit_list_error: Raised by list_commits when set.
        diff_errors: Commit hashes whose diff fetch raises.
        exists_errors: Paths whose existence check raises.
    """

    def __init__(
        self,
        files: dict[str, str] | None = None,
        commits: list[CommitInfo] | None = None,
    ) -> None:
        self.files = dict(files or {})
        self.commits = list(commits or [])
        self.list_error: Exception | None = None
        self.commit_list_error: Exception | None = None
        self.diff_errors: set[str] = set()
        self.exists_errors: set[str] = set()
        self.list_calls = 0
        self.diff_calls: list[str] = []

    async def list_files(self, repo_url: str, token: str | None = None) -> list[Document]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return [Document(path=p, content=c) for p, c in self.files.items()]

    async def list_commits(self, repo_url: str) -> list[CommitInfo]:
        if self.commit_list_error is not None:
            raise self.commit_list_error
        return list(self.commits)

    async def fetch_commit_diff(self, repo_url: str, commit_hash: str) -> str:
        self.diff_calls.append(commit_hash)
        if commit_hash in self.diff_errors:
            raise RuntimeError(f"diff unavailable for {commit_hash}")
        return f"--- file.py\n+change in {commit_hash}"

    async def file_exists(self, repo_url: str, path: str) -> bool:
        if path in self.exists_errors:
            raise RuntimeError(f"lookup failed for {path}")
        return path in self.files

    async def get_file_content(self, repo_url: str, path: str) -> str | None:
        return self.files.get(path)


class FakeSummarizer(FileSummarizer, CommitSummarizer):
    """Summarizer with failure injection.

    Attributes:
        failing_paths: Paths whose file summary raises.
        empty_paths: Paths whose file summary is blank.
        commit_reply: Returned by summarize_commit; None echoes the diff.
        commit_error: Raised by summarize_commit when set.
    """

    def __init__(self) -> None:
        self.failing_paths: set[str] = set()
        self.empty_paths: set[str] = set()
        self.commit_reply: str | None = None
        self.commit_error: Exception | None = None
        self.file_calls: list[str] = []
        self.commit_calls: list[str] = []

    async def summarize_file(self, document: Document) -> str:
        self.file_calls.append(document.path)
        if document.path in self.failing_paths:
            raise RuntimeError(f"summarizer unavailable for {document.path}")
        if document.path in self.empty_paths:
            return ""
        return f"Summary of {document.path}: {document.content[:20]}"

    async def summarize_commit(self, diff: str) -> str:
        self.commit_calls.append(diff)
        if self.commit_error is not None:
            raise self.commit_error
        if self.commit_reply is not None:
            return self.commit_reply
        return f"Summary: {diff.splitlines()[-1]}"


class FakeEmbedder(Embedder):
    """Embedder returning a short vector derived from text length."""

    def __init__(self) -> None:
        self.failing_texts: set[str] = set()
        self.calls: list[str] = []

    async def embed_text(self, text: str) -> list[float]:
        self.calls.append(text)
        if any(marker in text for marker in self.failing_texts):
            raise RuntimeError("embedding service unavailable")
        return [float(len(text)), 1.0, 0.0]


class RecordingSleeper:
    """Async sleeper that records requested durations without waiting."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class SimulatedClock:
    """Virtual time for tests that care about when things happen.

    ``sleep`` parks the caller until ``run`` advances time past its
    deadline. ``run`` lets every runnable task settle before firing the
    earliest timer, and returns once no timers remain.
    """

    def __init__(self, settle_iterations: int = 200) -> None:
        self.now = 0.0
        self._settle = settle_iterations
        self._timers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._seq = itertools.count()

    async def sleep(self, seconds: float) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        heapq.heappush(self._timers, (self.now + seconds, next(self._seq), future))
        await future

    async def run(self) -> None:
        while True:
            for _ in range(self._settle):
                await asyncio.sleep(0)
            if not self._timers:
                return
            deadline, _, future = heapq.heappop(self._timers)
            self.now = max(self.now, deadline)
            future.set_result(None)


def make_commits(count: int, prefix: str = "c") -> list[CommitInfo]:
    """Build ``count`` commits, newest first."""
    return [
        CommitInfo(
            commit_hash=f"{prefix}{i:039d}",
            message=f"commit {i}",
            author_name="Dev",
            date=f"2024-01-{count - i:02d}T00:00:00Z",
        )
        for i in range(count)
    ]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore(credits={"user-1": 100})


@pytest.fixture
def repository() -> FakeRepository:
    files = {f"src/file_{i}.py": f"print({i})" for i in range(7)}
    return FakeRepository(files=files, commits=make_commits(5))


@pytest.fixture
def summarizer() -> FakeSummarizer:
    return FakeSummarizer()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig()


@pytest.fixture
def bus(sleeper: RecordingSleeper) -> LocalEventBus:
    return LocalEventBus(sleeper=sleeper)


@pytest.fixture
def make_pipeline(
    store: InMemoryRecordStore,
    repository: FakeRepository,
    summarizer: FakeSummarizer,
    embedder: FakeEmbedder,
    config: PipelineConfig,
    bus: LocalEventBus,
) -> Callable[..., IngestionPipeline]:
    """Factory building a pipeline over the shared fakes."""

    def _make(**overrides: object) -> IngestionPipeline:
        kwargs: dict[str, object] = {
            "store": store,
            "lister": repository,
            "file_summarizer": summarizer,
            "embedder": embedder,
            "diff_fetcher": repository,
            "commit_summarizer": summarizer,
            "file_source": repository,
            "config": config,
            "bus": bus,
        }
        kwargs.update(overrides)
        return IngestionPipeline(**kwargs)  # type: ignore[arg-type]

    return _make


@pytest_asyncio.fixture
async def project(store: InMemoryRecordStore) -> Project:
    return await store.create_project(Project(id="proj-1", repo_url=REPO_URL, user_id="user-1"))
