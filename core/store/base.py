"""Record store contract for the ingestion pipeline.

The pipeline keeps no authoritative state in memory between steps. Every
step reads what it needs from a RecordStore and writes its results back
through idempotent, natural-key operations, which is what makes a crashed
or retried pipeline safe to resume.
"""

from abc import ABC, abstractmethod
from typing import Any

from .models import Commit, FileEmbedding, Project, ProjectStatus


class RecordStoreError(Exception):
    """Base exception for record store errors."""

    pass


class ProjectNotFoundError(RecordStoreError):
    """Project does not exist."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project {project_id} not found")
        self.project_id = project_id


class InvalidStatusTransitionError(RecordStoreError):
    """Requested project status change violates the state machine."""

    def __init__(self, project_id: str, current: ProjectStatus, target: ProjectStatus) -> None:
        super().__init__(
            f"Project {project_id} cannot move from {current.value} to {target.value}"
        )
        self.project_id = project_id
        self.current = current
        self.target = target


class RecordStore(ABC):
    """Abstract store for projects, commits, file embeddings and credits."""

    # Projects

    @abstractmethod
    async def create_project(self, project: Project) -> Project:
        """Create a project, returning the existing row if the id is taken."""

    @abstractmethod
    async def get_project(self, project_id: str) -> Project | None:
        """Return a project by id, or None."""

    @abstractmethod
    async def set_project_status(self, project_id: str, status: ProjectStatus) -> Project:
        """Move a project to ``status``.

        Raises:
            ProjectNotFoundError: If the project does not exist.
            InvalidStatusTransitionError: If the transition is not allowed.
        """

    @abstractmethod
    async def reset_progress(self, project_id: str, total_files: int) -> Project:
        """Set ``total_files`` and zero ``processed_files`` for a fresh listing."""

    @abstractmethod
    async def record_progress(self, project_id: str, processed_files: int) -> Project:
        """Advance ``processed_files``.

        The stored value never decreases and never exceeds ``total_files``.
        """

    @abstractmethod
    async def append_processing_log(
        self, project_id: str, event_type: str, entry: dict[str, Any]
    ) -> Project:
        """Append an entry under ``event_type`` in the project's processing logs."""

    @abstractmethod
    async def archive_project(self, project_id: str) -> Project:
        """Soft-archive a project. Archiving twice keeps the first timestamp."""

    @abstractmethod
    async def find_projects_by_repo(self, repo_url: str) -> list[Project]:
        """Return non-archived projects tracking ``repo_url``."""

    # Commits

    @abstractmethod
    async def get_commit(self, project_id: str, commit_hash: str) -> Commit | None:
        """Return a commit row by natural key, or None."""

    @abstractmethod
    async def list_commits(self, project_id: str) -> list[Commit]:
        """Return all commit rows of a project, newest first."""

    @abstractmethod
    async def list_commit_hashes(self, project_id: str) -> set[str]:
        """Return the hashes of every commit row of a project."""

    @abstractmethod
    async def upsert_commit(self, commit: Commit) -> Commit:
        """Create or update a commit on ``(project_id, commit_hash)``.

        On update, ``summary``, ``processing_status`` and ``updated_at`` are
        replaced; identity metadata is kept unless the stored value is empty.
        """

    # File embeddings

    @abstractmethod
    async def get_file_embedding(self, project_id: str, file_name: str) -> FileEmbedding | None:
        """Return a file embedding by natural key, or None."""

    @abstractmethod
    async def list_file_names(self, project_id: str) -> set[str]:
        """Return the file names with an embedding row in a project."""

    @abstractmethod
    async def upsert_file_embedding(self, record: FileEmbedding) -> FileEmbedding:
        """Create or replace a file embedding on ``(project_id, file_name)``."""

    @abstractmethod
    async def delete_file_embedding(self, project_id: str, file_name: str) -> bool:
        """Delete a file embedding. Returns False if there was nothing to delete."""

    # Credits

    @abstractmethod
    async def get_credits(self, user_id: str) -> int:
        """Return a user's credit balance (0 for unknown users)."""

    @abstractmethod
    async def deduct_credits(self, user_id: str, amount: int, reference: str) -> bool:
        """Atomically decrement a user's credits once per ``reference``.

        Returns:
            True if the deduction was applied, False if ``reference`` had
            already been charged.
        """

    async def close(self) -> None:
        """Release backend resources."""
        return None

    async def require_project(self, project_id: str) -> Project:
        """Return a project or raise.

        Raises:
            ProjectNotFoundError: If the project does not exist.
        """
        project = await self.get_project(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project
