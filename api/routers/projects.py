"""Project endpoints for the Strata API.

This module provides endpoints for creating projects, reading their
ingestion state and commit summaries, and retrying failed commits.
"""

import uuid
from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field, HttpUrl
from pydantic.alias_generators import to_camel

from api.dependencies import IngestionPipelineDep, RecordStoreDep
from core.store import Commit, CommitProcessingStatus, Project, ProjectStatus

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/projects", tags=["Projects"])


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateProjectRequest(_CamelModel):
    """Request model for creating a project.

    Attributes:
        repo_url: GitHub repository URL.
        user_id: User whose credits pay for ingestion.
        project_id: Optional client-chosen id; generated if omitted.
        token: Optional GitHub token for private repositories.
        file_count: Client-side file count estimate.
    """

    repo_url: HttpUrl = Field(..., description="Repository URL")
    user_id: str = Field(..., min_length=1, description="Owning user")
    project_id: str | None = Field(None, min_length=1, description="Project id")
    token: str | None = Field(None, description="GitHub access token")
    file_count: int = Field(default=0, ge=0, description="File count estimate")


class ProjectResponse(_CamelModel):
    """Ingestion state of a project."""

    id: str = Field(..., description="Project id")
    repo_url: str = Field(..., description="Repository URL")
    user_id: str | None = Field(None, description="Owning user")
    status: ProjectStatus = Field(..., description="Status")
    total_files: int = Field(..., description="Files to index")
    processed_files: int = Field(..., description="Files processed")
    processing_logs: dict[str, list[dict[str, Any]]] = Field(
        default_factory=dict, description="Processing logs"
    )
    created_at: datetime = Field(..., description="Creation time")
    archived_at: datetime | None = Field(None, description="Archive time")

    @classmethod
    def from_project(cls, project: Project) -> "ProjectResponse":
        return cls(**project.model_dump())


class CommitResponse(_CamelModel):
    """A commit summary row."""

    commit_hash: str = Field(..., description="Commit SHA")
    message: str = Field(default="", description="Commit message")
    author_name: str = Field(default="", description="Author name")
    author_avatar: str = Field(default="", description="Author avatar")
    date: str | None = Field(None, description="Author date")
    summary: str = Field(default="", description="Summary or diagnostic")
    processing_status: CommitProcessingStatus = Field(..., description="Processing status")

    @classmethod
    def from_commit(cls, commit: Commit) -> "CommitResponse":
        return cls(**commit.model_dump(exclude={"project_id", "updated_at"}))


class CommitListResponse(_CamelModel):
    """Commit rows of a project, newest first."""

    commits: list[CommitResponse] = Field(..., description="Commits")
    total: int = Field(..., description="Number of commits")


class RetryResponse(_CamelModel):
    """Result of a commit retry request."""

    commit_hash: str = Field(..., description="Commit SHA")
    queued: bool = Field(..., description="Whether processing was re-dispatched")


@router.post(
    "",
    response_model=ProjectResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Create a project and start ingestion",
)
async def create_project(
    request: CreateProjectRequest,
    pipeline: IngestionPipelineDep,
) -> ProjectResponse:
    """Create the project row in INITIALIZING and request its ingestion.

    Ingestion runs in the background; poll ``GET /projects/{id}`` for
    progress.
    """
    project_id = request.project_id or str(uuid.uuid4())
    project = await pipeline.create_project(
        project_id=project_id,
        repo_url=str(request.repo_url).rstrip("/"),
        user_id=request.user_id,
        token=request.token,
        file_count=request.file_count,
    )
    logger.info("Project created", project_id=project_id)
    return ProjectResponse.from_project(project)


@router.get(
    "/{project_id}",
    response_model=ProjectResponse,
    summary="Get project state",
    responses={status.HTTP_404_NOT_FOUND: {"description": "Project not found"}},
)
async def get_project(project_id: str, store: RecordStoreDep) -> ProjectResponse:
    """Return status, progress and processing logs of a project."""
    return ProjectResponse.from_project(await store.require_project(project_id))


@router.get(
    "/{project_id}/commits",
    response_model=CommitListResponse,
    summary="List commit summaries",
    responses={status.HTTP_404_NOT_FOUND: {"description": "Project not found"}},
)
async def list_commits(project_id: str, store: RecordStoreDep) -> CommitListResponse:
    await store.require_project(project_id)
    commits = await store.list_commits(project_id)
    return CommitListResponse(
        commits=[CommitResponse.from_commit(c) for c in commits],
        total=len(commits),
    )


@router.post(
    "/{project_id}/commits/{commit_hash}/retry",
    response_model=RetryResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Retry a failed commit",
    responses={
        status.HTTP_404_NOT_FOUND: {"description": "Project not found"},
        status.HTTP_409_CONFLICT: {"description": "Commit missing or already completed"},
    },
)
async def retry_commit(
    project_id: str,
    commit_hash: str,
    pipeline: IngestionPipelineDep,
) -> RetryResponse:
    """Re-dispatch a FAILED or stuck PROCESSING commit."""
    if not await pipeline.retry_commit(project_id, commit_hash):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Commit {commit_hash} does not exist or is already completed",
        )
    return RetryResponse(commit_hash=commit_hash, queued=True)
