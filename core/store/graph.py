"""Neo4j and Qdrant backed record store.

Projects, commits, processing logs and the credit ledger live in Neo4j;
file summary embeddings live in a Qdrant collection. Every write MERGEs
on the record's natural key.
"""

import json
from typing import Any

import structlog
from neo4j.exceptions import ConstraintError, Neo4jError

from core.embeddings.store import FileEmbeddingIndex, VectorStoreError

from .base import (
    InvalidStatusTransitionError,
    ProjectNotFoundError,
    RecordStore,
    RecordStoreError,
)
from .connection import GraphConnection
from .models import Commit, FileEmbedding, Project, ProjectStatus, utcnow
from .queries import QUERIES

logger = structlog.get_logger(__name__)

_PROJECT_FIELDS = set(Project.model_fields)
_COMMIT_FIELDS = set(Commit.model_fields)


class GraphRecordStore(RecordStore):
    """RecordStore implementation over Neo4j plus a Qdrant file index.

    Attributes:
        connection: The Neo4j connection.
        file_index: The Qdrant index holding FileEmbedding records.
    """

    def __init__(self, connection: GraphConnection, file_index: FileEmbeddingIndex) -> None:
        """Initialize the store.

        Args:
            connection: An established GraphConnection.
            file_index: Index used for file embeddings.
        """
        self.connection = connection
        self.file_index = file_index
        self._logger = logger.bind(component="graph_record_store")

    async def _write(self, query: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            return await self.connection.execute_write(query, params)
        except ConstraintError:
            raise
        except Neo4jError as e:
            raise RecordStoreError(f"Graph write failed: {e}") from e

    async def _read(self, query: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            return await self.connection.execute_read(query, params)
        except Neo4jError as e:
            raise RecordStoreError(f"Graph read failed: {e}") from e

    async def _write_project(self, query: str, project_id: str, **params: Any) -> Project:
        rows = await self._write(query, {"id": project_id, **params})
        if not rows:
            raise ProjectNotFoundError(project_id)
        return await self.require_project(project_id)

    # Projects

    async def create_project(self, project: Project) -> Project:
        await self._write(
            QUERIES.CREATE_PROJECT,
            {
                "id": project.id,
                "repo_url": project.repo_url,
                "user_id": project.user_id,
                "status": project.status.value,
                "total_files": project.total_files,
                "processed_files": project.processed_files,
                "created_at": project.created_at.isoformat(),
            },
        )
        return await self.require_project(project.id)

    async def get_project(self, project_id: str) -> Project | None:
        rows = await self._read(QUERIES.GET_PROJECT, {"id": project_id})
        if not rows or rows[0].get("project") is None:
            return None

        props = {k: v for k, v in rows[0]["project"].items() if k in _PROJECT_FIELDS}
        logs: dict[str, list[dict[str, Any]]] = {}
        for log in rows[0].get("logs") or []:
            logs.setdefault(log["event_type"], []).append(json.loads(log["entry"]))
        props["processing_logs"] = logs
        return Project.model_validate(props)

    async def set_project_status(self, project_id: str, status: ProjectStatus) -> Project:
        project = await self.require_project(project_id)
        if not project.status.can_transition_to(status):
            raise InvalidStatusTransitionError(project_id, project.status, status)
        if project.status == status:
            return project

        rows = await self._write(
            QUERIES.SET_PROJECT_STATUS,
            {"id": project_id, "expected": project.status.value, "status": status.value},
        )
        if not rows:
            # Lost a race with another writer; re-validate against what it wrote.
            current = await self.require_project(project_id)
            if current.status != status:
                raise InvalidStatusTransitionError(project_id, current.status, status)
            return current

        self._logger.debug(
            "project_status_changed",
            project_id=project_id,
            previous=project.status.value,
            status=status.value,
        )
        return project.model_copy(update={"status": status})

    async def reset_progress(self, project_id: str, total_files: int) -> Project:
        return await self._write_project(
            QUERIES.RESET_PROGRESS, project_id, total_files=max(total_files, 0)
        )

    async def record_progress(self, project_id: str, processed_files: int) -> Project:
        return await self._write_project(
            QUERIES.RECORD_PROGRESS, project_id, processed_files=processed_files
        )

    async def append_processing_log(
        self, project_id: str, event_type: str, entry: dict[str, Any]
    ) -> Project:
        return await self._write_project(
            QUERIES.APPEND_PROCESSING_LOG,
            project_id,
            event_type=event_type,
            entry=json.dumps(entry, default=str),
            created_at=utcnow().isoformat(),
        )

    async def archive_project(self, project_id: str) -> Project:
        return await self._write_project(
            QUERIES.ARCHIVE_PROJECT, project_id, archived_at=utcnow().isoformat()
        )

    async def find_projects_by_repo(self, repo_url: str) -> list[Project]:
        rows = await self._read(QUERIES.FIND_PROJECTS_BY_REPO, {"repo_url": repo_url})
        projects = []
        for row in rows:
            project = await self.get_project(row["id"])
            if project is not None:
                projects.append(project)
        return projects

    # Commits

    @staticmethod
    def _to_commit(props: dict[str, Any]) -> Commit:
        return Commit.model_validate({k: v for k, v in props.items() if k in _COMMIT_FIELDS})

    async def get_commit(self, project_id: str, commit_hash: str) -> Commit | None:
        rows = await self._read(
            QUERIES.GET_COMMIT, {"project_id": project_id, "commit_hash": commit_hash}
        )
        return self._to_commit(rows[0]["commit"]) if rows else None

    async def list_commits(self, project_id: str) -> list[Commit]:
        rows = await self._read(QUERIES.LIST_COMMITS, {"project_id": project_id})
        return [self._to_commit(row["commit"]) for row in rows]

    async def list_commit_hashes(self, project_id: str) -> set[str]:
        rows = await self._read(QUERIES.LIST_COMMIT_HASHES, {"project_id": project_id})
        return {row["commit_hash"] for row in rows}

    async def upsert_commit(self, commit: Commit) -> Commit:
        try:
            rows = await self._write(
                QUERIES.UPSERT_COMMIT,
                {
                    "project_id": commit.project_id,
                    "commit_hash": commit.commit_hash,
                    "message": commit.message,
                    "author_name": commit.author_name,
                    "author_avatar": commit.author_avatar,
                    "date": commit.date,
                    "summary": commit.summary,
                    "processing_status": commit.processing_status.value,
                    "updated_at": utcnow().isoformat(),
                },
            )
        except ConstraintError as e:
            raise RecordStoreError(f"Commit upsert conflict: {e}") from e
        return self._to_commit(rows[0]["commit"])

    # File embeddings

    async def get_file_embedding(self, project_id: str, file_name: str) -> FileEmbedding | None:
        try:
            return await self.file_index.get(project_id, file_name)
        except VectorStoreError as e:
            raise RecordStoreError(str(e)) from e

    async def list_file_names(self, project_id: str) -> set[str]:
        try:
            return await self.file_index.list_file_names(project_id)
        except VectorStoreError as e:
            raise RecordStoreError(str(e)) from e

    async def upsert_file_embedding(self, record: FileEmbedding) -> FileEmbedding:
        try:
            return await self.file_index.upsert(record)
        except VectorStoreError as e:
            raise RecordStoreError(str(e)) from e

    async def delete_file_embedding(self, project_id: str, file_name: str) -> bool:
        try:
            return await self.file_index.delete(project_id, file_name)
        except VectorStoreError as e:
            raise RecordStoreError(str(e)) from e

    # Credits

    async def get_credits(self, user_id: str) -> int:
        rows = await self._read(QUERIES.GET_CREDITS, {"user_id": user_id})
        return int(rows[0]["credits"]) if rows else 0

    async def deduct_credits(self, user_id: str, amount: int, reference: str) -> bool:
        try:
            rows = await self._write(
                QUERIES.DEDUCT_CREDITS,
                {
                    "user_id": user_id,
                    "amount": amount,
                    "reference": reference,
                    "created_at": utcnow().isoformat(),
                },
            )
        except ConstraintError:
            # A concurrent deduction with the same reference committed first.
            return False

        applied = bool(rows)
        self._logger.info(
            "credits_deducted" if applied else "credit_deduction_skipped",
            user_id=user_id,
            amount=amount,
            reference=reference,
        )
        return applied

    async def close(self) -> None:
        await self.file_index.close()
        await self.connection.close()
