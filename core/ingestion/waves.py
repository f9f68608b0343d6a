"""Commit history wave scheduling.

Commit summarization is the most rate-limited part of ingestion, so commits
are not processed all at once. The scheduler computes which commits have
no row yet, partitions them into waves of ``commit_wave_size`` and sends
every job immediately; each job then delays itself by
``wave_index * commit_wave_delay_seconds``. At any instant at most one
wave is active.
"""

import structlog

from core.store import RecordStore

from .events import CommitProcessRequested
from .models import CommitInfo, CommitJob, PipelineConfig, WaveSchedule
from .steps import StepRunner

logger = structlog.get_logger(__name__)


class CommitWaveScheduler:
    """Plans and dispatches commit processing jobs in staggered waves."""

    def __init__(self, store: RecordStore, config: PipelineConfig | None = None) -> None:
        self.store = store
        self.config = config or PipelineConfig()
        self._logger = logger.bind(component="commit_wave_scheduler")

    @staticmethod
    def compute_unprocessed(commits: list[CommitInfo], known: set[str]) -> list[CommitInfo]:
        """Return commits without a stored row, preserving the input order.

        Repeated hashes in ``commits`` keep only their first occurrence.
        """
        seen = set(known)
        unprocessed = []
        for commit in commits:
            if commit.commit_hash in seen:
                continue
            seen.add(commit.commit_hash)
            unprocessed.append(commit)
        return unprocessed

    def plan_waves(self, commits: list[CommitInfo]) -> WaveSchedule:
        """Partition commits into waves with increasing self-delays.

        Args:
            commits: Commits to schedule, in processing order.

        Returns:
            The schedule; empty when there is nothing to process.
        """
        size = self.config.commit_wave_size
        delay = self.config.commit_wave_delay_seconds
        total = len(commits)
        total_waves = -(-total // size)

        jobs = [
            CommitJob(
                commit=commit,
                commit_index=index,
                total_commits=total,
                wave_index=index // size,
                total_waves=total_waves,
                delay_seconds=(index // size) * delay,
            )
            for index, commit in enumerate(commits)
        ]
        return WaveSchedule(jobs=jobs, wave_size=size, wave_delay_seconds=delay)

    async def schedule(
        self,
        project_id: str,
        repo_url: str,
        commits: list[CommitInfo],
        steps: StepRunner,
    ) -> WaveSchedule:
        """Compute the unprocessed delta and send one job per commit.

        Args:
            project_id: Owning project.
            repo_url: Repository URL passed through to each job.
            commits: Full recent history from the repository lister.
            steps: Step runner used to send the jobs.

        Returns:
            The dispatched schedule.
        """
        known = await self.store.list_commit_hashes(project_id)
        unprocessed = self.compute_unprocessed(commits, known)
        schedule = self.plan_waves(unprocessed)

        for job in schedule.jobs:
            await steps.send(
                CommitProcessRequested(
                    project_id=project_id,
                    repo_url=repo_url,
                    commit=job.commit,
                    commit_index=job.commit_index,
                    total_commits=job.total_commits,
                    wave_index=job.wave_index,
                    total_waves=job.total_waves,
                    delay_seconds=job.delay_seconds,
                )
            )

        self._logger.info(
            "commit_waves_dispatched",
            project_id=project_id,
            known=len(known),
            unprocessed=schedule.total_commits,
            total_waves=schedule.total_waves,
            estimated_seconds=schedule.estimated_seconds,
        )
        return schedule
