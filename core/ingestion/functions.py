"""Pipeline function declarations.

Binds each trigger event to its handler with the retry budget and
concurrency limit it runs under:

    process-project-creation  retries 1, 2 per user
    process-single-commit     retries 2, 5 global
    process-file-changes      retries 1, 5 per project
    smart-reindex             retries 1, 3 per project
    process-release           retries 1, 2 per project
"""

from typing import Any

import structlog

from core.store import RecordStore, utcnow

from .commits import CommitProcessor
from .coordinator import ProjectIngestionCoordinator
from .events import (
    COMMIT_PROCESS_REQUESTED,
    FILES_REINDEX_REQUESTED,
    PROJECT_CREATION_REQUESTED,
    RELEASE_ANALYSIS_REQUESTED,
    SMART_REINDEX_REQUESTED,
    ReleaseAnalysisRequested,
)
from .reindex import DeltaReindexer
from .steps import ConcurrencyLimit, FunctionSpec, LocalEventBus, StepRunner

logger = structlog.get_logger(__name__)

RELEASE_LOG = "release"

DEFAULT_CONCURRENCY: dict[str, int] = {
    "process-project-creation": 2,
    "process-single-commit": 5,
    "process-file-changes": 5,
    "smart-reindex": 3,
    "process-release": 2,
}


class ReleaseRecorder:
    """Appends published releases to a project's processing logs."""

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def record(self, event: ReleaseAnalysisRequested, steps: StepRunner) -> dict[str, Any]:
        entry = {
            "timestamp": utcnow().isoformat(),
            "reason": "release",
            "action": event.release_action,
            "name": event.release_name,
            "tag": event.release_tag,
        }

        async def append() -> dict[str, Any]:
            await self.store.append_processing_log(event.project_id, RELEASE_LOG, entry)
            return entry

        result = await steps.run("record-release", append)
        logger.info("release_recorded", project_id=event.project_id, tag=event.release_tag)
        return result


def build_functions(
    coordinator: ProjectIngestionCoordinator,
    commit_processor: CommitProcessor,
    reindexer: DeltaReindexer,
    release_recorder: ReleaseRecorder,
    concurrency: dict[str, int] | None = None,
) -> list[FunctionSpec]:
    """Declare every pipeline function.

    Args:
        coordinator: Handles project creation.
        commit_processor: Handles commit jobs.
        reindexer: Handles file-change and smart reindex requests.
        release_recorder: Handles release notifications.
        concurrency: Per-function-id overrides of the concurrency limits.

    Returns:
        Function specs ready to register on a bus.
    """
    limits = {**DEFAULT_CONCURRENCY, **(concurrency or {})}
    return [
        FunctionSpec(
            id="process-project-creation",
            event=PROJECT_CREATION_REQUESTED,
            handler=coordinator.run,
            retries=1,
            concurrency=ConcurrencyLimit(limits["process-project-creation"], key="user_id"),
        ),
        FunctionSpec(
            id="process-single-commit",
            event=COMMIT_PROCESS_REQUESTED,
            handler=commit_processor.process,
            retries=2,
            concurrency=ConcurrencyLimit(limits["process-single-commit"]),
        ),
        FunctionSpec(
            id="process-file-changes",
            event=FILES_REINDEX_REQUESTED,
            handler=reindexer.run_file_changes,
            retries=1,
            concurrency=ConcurrencyLimit(limits["process-file-changes"], key="project_id"),
        ),
        FunctionSpec(
            id="smart-reindex",
            event=SMART_REINDEX_REQUESTED,
            handler=reindexer.run_smart_reindex,
            retries=1,
            concurrency=ConcurrencyLimit(limits["smart-reindex"], key="project_id"),
        ),
        FunctionSpec(
            id="process-release",
            event=RELEASE_ANALYSIS_REQUESTED,
            handler=release_recorder.record,
            retries=1,
            concurrency=ConcurrencyLimit(limits["process-release"], key="project_id"),
        ),
    ]


def register_functions(bus: LocalEventBus, functions: list[FunctionSpec]) -> LocalEventBus:
    """Register function specs on a bus and return it."""
    for spec in functions:
        bus.register(spec)
    return bus
