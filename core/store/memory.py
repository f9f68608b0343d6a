"""In-memory record store.

Used for local development and tests. All mutations run under a single
asyncio lock so each operation is atomic with respect to other coroutines,
mirroring the row-level guarantees of the persistent backend.
"""

import asyncio
from typing import Any

import structlog

from .base import InvalidStatusTransitionError, ProjectNotFoundError, RecordStore
from .models import Commit, FileEmbedding, Project, ProjectStatus, utcnow

logger = structlog.get_logger(__name__)


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed RecordStore keyed by natural keys."""

    def __init__(self, credits: dict[str, int] | None = None) -> None:
        """Initialize the store.

        Args:
            credits: Optional starting credit balances by user id.
        """
        self._projects: dict[str, Project] = {}
        self._commits: dict[tuple[str, str], Commit] = {}
        self._files: dict[tuple[str, str], FileEmbedding] = {}
        self._credits: dict[str, int] = dict(credits or {})
        self._charged: set[str] = set()
        self._lock = asyncio.Lock()

    def _project(self, project_id: str) -> Project:
        project = self._projects.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def _save(self, project: Project, **changes: Any) -> Project:
        updated = project.model_copy(update=changes)
        self._projects[project.id] = updated
        return updated.model_copy(deep=True)

    # Projects

    async def create_project(self, project: Project) -> Project:
        async with self._lock:
            existing = self._projects.get(project.id)
            if existing is not None:
                return existing.model_copy(deep=True)
            self._projects[project.id] = project.model_copy(deep=True)
            return project.model_copy(deep=True)

    async def get_project(self, project_id: str) -> Project | None:
        project = self._projects.get(project_id)
        return project.model_copy(deep=True) if project else None

    async def set_project_status(self, project_id: str, status: ProjectStatus) -> Project:
        async with self._lock:
            project = self._project(project_id)
            if not project.status.can_transition_to(status):
                raise InvalidStatusTransitionError(project_id, project.status, status)
            if project.status != status:
                logger.debug(
                    "project_status_changed",
                    project_id=project_id,
                    previous=project.status.value,
                    status=status.value,
                )
            return self._save(project, status=status)

    async def reset_progress(self, project_id: str, total_files: int) -> Project:
        async with self._lock:
            project = self._project(project_id)
            return self._save(project, total_files=max(total_files, 0), processed_files=0)

    async def record_progress(self, project_id: str, processed_files: int) -> Project:
        async with self._lock:
            project = self._project(project_id)
            value = min(max(processed_files, project.processed_files), project.total_files)
            return self._save(project, processed_files=value)

    async def append_processing_log(
        self, project_id: str, event_type: str, entry: dict[str, Any]
    ) -> Project:
        async with self._lock:
            project = self._project(project_id)
            logs = {key: list(entries) for key, entries in project.processing_logs.items()}
            logs.setdefault(event_type, []).append(dict(entry))
            return self._save(project, processing_logs=logs)

    async def archive_project(self, project_id: str) -> Project:
        async with self._lock:
            project = self._project(project_id)
            if project.archived_at is not None:
                return project.model_copy(deep=True)
            return self._save(project, archived_at=utcnow())

    async def find_projects_by_repo(self, repo_url: str) -> list[Project]:
        return [
            p.model_copy(deep=True)
            for p in self._projects.values()
            if p.repo_url == repo_url and not p.is_archived
        ]

    # Commits

    async def get_commit(self, project_id: str, commit_hash: str) -> Commit | None:
        commit = self._commits.get((project_id, commit_hash))
        return commit.model_copy() if commit else None

    async def list_commits(self, project_id: str) -> list[Commit]:
        rows = [c.model_copy() for c in self._commits.values() if c.project_id == project_id]
        return sorted(rows, key=lambda c: c.date or "", reverse=True)

    async def list_commit_hashes(self, project_id: str) -> set[str]:
        return {c.commit_hash for c in self._commits.values() if c.project_id == project_id}

    async def upsert_commit(self, commit: Commit) -> Commit:
        async with self._lock:
            existing = self._commits.get(commit.key)
            if existing is None:
                stored = commit.model_copy(update={"updated_at": utcnow()})
            else:
                stored = existing.model_copy(
                    update={
                        "message": existing.message or commit.message,
                        "author_name": existing.author_name or commit.author_name,
                        "author_avatar": existing.author_avatar or commit.author_avatar,
                        "date": existing.date or commit.date,
                        "summary": commit.summary,
                        "processing_status": commit.processing_status,
                        "updated_at": utcnow(),
                    }
                )
            self._commits[commit.key] = stored
            return stored.model_copy()

    # File embeddings

    async def get_file_embedding(self, project_id: str, file_name: str) -> FileEmbedding | None:
        record = self._files.get((project_id, file_name))
        return record.model_copy(deep=True) if record else None

    async def list_file_names(self, project_id: str) -> set[str]:
        return {name for pid, name in self._files if pid == project_id}

    async def upsert_file_embedding(self, record: FileEmbedding) -> FileEmbedding:
        async with self._lock:
            stored = record.model_copy(update={"updated_at": utcnow()}, deep=True)
            self._files[record.key] = stored
            return stored.model_copy(deep=True)

    async def delete_file_embedding(self, project_id: str, file_name: str) -> bool:
        async with self._lock:
            return self._files.pop((project_id, file_name), None) is not None

    # Credits

    async def get_credits(self, user_id: str) -> int:
        return self._credits.get(user_id, 0)

    async def deduct_credits(self, user_id: str, amount: int, reference: str) -> bool:
        async with self._lock:
            if reference in self._charged:
                return False
            self._charged.add(reference)
            self._credits[user_id] = self._credits.get(user_id, 0) - amount
            return True
