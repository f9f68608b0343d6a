"""Typed trigger events for pipeline functions.

Every event is a pydantic model discriminated by its ``name``. Payloads
travel with camelCase keys; ``parse_event`` validates a raw payload at the
dispatch boundary so functions only ever see well-formed events.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from .models import CommitInfo, PipelineError

PROJECT_CREATION_REQUESTED = "project.creation.requested"
COMMIT_PROCESS_REQUESTED = "project.commit.process.requested"
FILES_REINDEX_REQUESTED = "project.files.reindex.requested"
SMART_REINDEX_REQUESTED = "project.smart.reindex.requested"
RELEASE_ANALYSIS_REQUESTED = "project.release.analysis.requested"


class EventValidationError(PipelineError):
    """Raised when an event payload does not match its schema."""

    def __init__(self, name: str, message: str) -> None:
        super().__init__(f"Invalid event {name!r}: {message}")
        self.name = name


class _Event(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    project_id: str = Field(..., min_length=1, description="Target project")

    def to_wire(self) -> dict[str, Any]:
        """Serialize as ``{"name": ..., "data": {...}}`` with camelCase keys."""
        data = self.model_dump(mode="json", by_alias=True, exclude={"name"})
        return {"name": self.name, "data": data}  # type: ignore[attr-defined]


class ProjectCreationRequested(_Event):
    """Start full ingestion of a newly created project."""

    name: Literal["project.creation.requested"] = PROJECT_CREATION_REQUESTED
    repo_url: str = Field(..., min_length=1, description="Repository URL")
    token: str | None = Field(None, description="Optional access token")
    user_id: str = Field(..., min_length=1, description="User paying for ingestion")
    file_count: int = Field(default=0, ge=0, description="Client-side file estimate")


class CommitProcessRequested(_Event):
    """Summarize one commit, optionally after a wave delay."""

    name: Literal["project.commit.process.requested"] = COMMIT_PROCESS_REQUESTED
    commit: CommitInfo = Field(..., description="Commit metadata")
    repo_url: str = Field(..., min_length=1, description="Repository URL")
    commit_index: int = Field(default=0, ge=0, description="Position among unprocessed commits")
    total_commits: int = Field(default=1, ge=0, description="Number of unprocessed commits")
    wave_index: int = Field(default=0, ge=0, description="Wave number")
    total_waves: int = Field(default=1, ge=0, description="Number of waves")
    delay_seconds: float = Field(default=0, ge=0, description="Self-delay before processing")
    webhook_triggered: bool = Field(default=False, description="Dispatched from a push webhook")


class FilesReindexRequested(_Event):
    """Reindex an explicit list of changed files."""

    name: Literal["project.files.reindex.requested"] = FILES_REINDEX_REQUESTED
    files: list[str] = Field(default_factory=list, description="Changed paths")
    repo_url: str = Field(..., min_length=1, description="Repository URL")
    reason: str = Field(default="manual", description="Trigger reason")


class SmartReindexRequested(_Event):
    """Reindex the files touched by a significant change."""

    name: Literal["project.smart.reindex.requested"] = SMART_REINDEX_REQUESTED
    repo_url: str = Field(..., min_length=1, description="Repository URL")
    changed_files: list[str] = Field(default_factory=list, description="Changed paths")
    commit_hash: str | None = Field(None, description="Triggering commit")
    reason: str = Field(default="push", description="Trigger reason")


class ReleaseAnalysisRequested(_Event):
    """Record a published release against a project."""

    name: Literal["project.release.analysis.requested"] = RELEASE_ANALYSIS_REQUESTED
    repo_url: str = Field(..., min_length=1, description="Repository URL")
    release_action: str = Field(..., description="Webhook action")
    release_name: str | None = Field(None, description="Release name")
    release_tag: str = Field(..., description="Release tag")


PipelineEvent = Annotated[
    ProjectCreationRequested
    | CommitProcessRequested
    | FilesReindexRequested
    | SmartReindexRequested
    | ReleaseAnalysisRequested,
    Field(discriminator="name"),
]

EVENT_NAMES = frozenset(
    {
        PROJECT_CREATION_REQUESTED,
        COMMIT_PROCESS_REQUESTED,
        FILES_REINDEX_REQUESTED,
        SMART_REINDEX_REQUESTED,
        RELEASE_ANALYSIS_REQUESTED,
    }
)

_adapter: TypeAdapter[PipelineEvent] = TypeAdapter(PipelineEvent)


def parse_event(name: str, data: dict[str, Any]) -> PipelineEvent:
    """Validate a raw event payload.

    Args:
        name: Event name.
        data: Payload with camelCase or snake_case keys.

    Returns:
        The typed event.

    Raises:
        EventValidationError: If the name is unknown or the payload is invalid.
    """
    if name not in EVENT_NAMES:
        raise EventValidationError(name, "unknown event name")
    try:
        return _adapter.validate_python({**data, "name": name})
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise EventValidationError(name, errors) from e
