"""Tests for commit wave scheduling."""

import pytest

from core.ingestion import (
    CommitProcessRequested,
    CommitWaveScheduler,
    LocalEventBus,
    LocalStepRunner,
    PipelineConfig,
)
from core.store import Commit, CommitProcessingStatus, InMemoryRecordStore
from tests.conftest import REPO_URL, FakeRepository, SimulatedClock, make_commits

DIFF_SECONDS = 5.0


class TimedRepository(FakeRepository):
    """Repository whose diff fetch takes simulated time and records when it ran."""

    def __init__(self, clock: SimulatedClock) -> None:
        super().__init__()
        self.clock = clock
        self.starts: list[float] = []
        self.active = 0
        self.peak = 0

    async def fetch_commit_diff(self, repo_url: str, commit_hash: str) -> str:
        self.starts.append(self.clock.now)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await self.clock.sleep(DIFF_SECONDS)
        finally:
            self.active -= 1
        return await super().fetch_commit_diff(repo_url, commit_hash)


@pytest.fixture
def clock() -> SimulatedClock:
    return SimulatedClock()


@pytest.fixture
def timed_repository(clock: SimulatedClock) -> TimedRepository:
    return TimedRepository(clock)


@pytest.fixture
def scheduler(store: InMemoryRecordStore) -> CommitWaveScheduler:
    return CommitWaveScheduler(store, PipelineConfig())


class TestComputeUnprocessed:
    """Tests for the unprocessed commit delta."""

    def test_known_hashes_removed_in_order(self):
        commits = make_commits(4)
        known = {commits[1].commit_hash}

        result = CommitWaveScheduler.compute_unprocessed(commits, known)

        assert result == [commits[0], commits[2], commits[3]]

    def test_duplicate_hashes_collapsed(self):
        commits = make_commits(2)

        result = CommitWaveScheduler.compute_unprocessed(commits + commits, set())

        assert result == commits


class TestPlanWaves:
    """Tests for wave partitioning."""

    def test_seven_commits_three_waves(self, scheduler: CommitWaveScheduler):
        schedule = scheduler.plan_waves(make_commits(7))

        assert schedule.total_waves == 3
        assert [len(w) for w in schedule.waves()] == [3, 3, 1]
        assert [j.delay_seconds for j in schedule.jobs] == [0, 0, 0, 20, 20, 20, 40]
        assert all(j.total_commits == 7 and j.total_waves == 3 for j in schedule.jobs)

    def test_one_wave_active_at_a_time(self, scheduler: CommitWaveScheduler):
        schedule = scheduler.plan_waves(make_commits(8))

        for t in (0.0, 19.9, 20.0, 45.0):
            active = schedule.active_at(t)
            assert 0 < len(active) <= 3
            assert len({j.wave_index for j in active}) == 1

    def test_empty_schedule(self, scheduler: CommitWaveScheduler):
        schedule = scheduler.plan_waves([])

        assert schedule.total_waves == 0
        assert schedule.waves() == []
        assert schedule.estimated_seconds == 0


class TestSchedule:
    """Tests for dispatching commit jobs."""

    @pytest.mark.asyncio
    async def test_sends_one_event_per_unprocessed_commit(
        self, scheduler: CommitWaveScheduler, store: InMemoryRecordStore, bus: LocalEventBus
    ):
        commits = make_commits(5)
        await store.upsert_commit(Commit(project_id="p1", commit_hash=commits[0].commit_hash))

        schedule = await scheduler.schedule("p1", REPO_URL, commits, LocalStepRunner(bus, {}))

        assert schedule.total_commits == 4
        assert all(isinstance(e, CommitProcessRequested) for e in bus.sent)
        assert [e.commit.commit_hash for e in bus.sent] == [c.commit_hash for c in commits[1:]]
        assert [e.wave_index for e in bus.sent] == [0, 0, 0, 1]
        assert bus.sent[3].delay_seconds == 20

    @pytest.mark.asyncio
    async def test_nothing_to_send(
        self, scheduler: CommitWaveScheduler, store: InMemoryRecordStore, bus: LocalEventBus
    ):
        commits = make_commits(2)
        for commit in commits:
            await store.upsert_commit(Commit(project_id="p1", commit_hash=commit.commit_hash))

        schedule = await scheduler.schedule("p1", REPO_URL, commits, LocalStepRunner(bus, {}))

        assert schedule.total_commits == 0
        assert bus.sent == []


class TestWaveTiming:
    """Commit jobs run through the event bus against a simulated clock."""

    @pytest.mark.asyncio
    async def test_waves_start_on_their_own_schedule(
        self, make_pipeline, store: InMemoryRecordStore, clock: SimulatedClock, timed_repository
    ):
        """Sleeping jobs do not hold concurrency slots, so wave i starts at i * 20s."""
        pipeline = make_pipeline(
            config=PipelineConfig(commit_jitter_seconds=0),
            bus=LocalEventBus(sleeper=clock.sleep),
            diff_fetcher=timed_repository,
        )

        schedule = await pipeline.scheduler.schedule(
            "p1", REPO_URL, make_commits(15), LocalStepRunner(pipeline.bus, {})
        )
        await clock.run()
        await pipeline.bus.drain()

        assert schedule.total_waves == 5
        assert sorted(timed_repository.starts) == [
            wave * 20.0 for wave in range(5) for _ in range(3)
        ]
        assert timed_repository.peak == 3
        assert clock.now == 80.0 + DIFF_SECONDS
        assert clock.now <= schedule.estimated_seconds

        commits = await store.list_commits("p1")
        assert len(commits) == 15
        assert all(c.processing_status == CommitProcessingStatus.COMPLETED for c in commits)

    @pytest.mark.asyncio
    async def test_limit_still_bounds_executing_jobs(
        self, make_pipeline, clock: SimulatedClock, timed_repository
    ):
        pipeline = make_pipeline(
            config=PipelineConfig(commit_jitter_seconds=0),
            bus=LocalEventBus(sleeper=clock.sleep),
            diff_fetcher=timed_repository,
            concurrency={"process-single-commit": 2},
        )

        await pipeline.scheduler.schedule(
            "p1", REPO_URL, make_commits(3), LocalStepRunner(pipeline.bus, {})
        )
        await clock.run()
        await pipeline.bus.drain()

        assert sorted(timed_repository.starts) == [0.0, 0.0, DIFF_SECONDS]
        assert timed_repository.peak == 2
