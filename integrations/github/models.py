"""Pydantic models for GitHub integration.

This module defines data models for the GitHub entities the pipeline reads:
repositories, commits, changed files, tree entries, and the webhook
payloads that trigger incremental work.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WebhookEvent(str, Enum):
    """GitHub webhook event types handled by Strata."""

    PING = "ping"
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    RELEASE = "release"
    REPOSITORY = "repository"


class FileStatus(str, Enum):
    """File change status in a commit or PR."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"
    COPIED = "copied"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


class GitHubUser(BaseModel):
    """GitHub user model."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="User ID")
    login: str = Field(..., description="Username")
    avatar_url: str | None = Field(None, description="Avatar URL")


class GitHubRepository(BaseModel):
    """GitHub repository model."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Repository ID")
    name: str = Field(..., description="Repository name")
    full_name: str = Field(..., description="Full name (owner/repo)")
    owner: GitHubUser = Field(..., description="Repository owner")
    private: bool = Field(default=False, description="Is private repository")
    html_url: str = Field(..., description="Repository URL")
    default_branch: str = Field(default="main", description="Default branch")


class GitHubFile(BaseModel):
    """A file changed by a commit or PR."""

    model_config = ConfigDict(frozen=True)

    filename: str = Field(..., description="File path")
    status: FileStatus = Field(..., description="Change status")
    additions: int = Field(default=0, description="Lines added")
    deletions: int = Field(default=0, description="Lines deleted")
    patch: str | None = Field(None, description="Diff patch")
    previous_filename: str | None = Field(None, description="Previous name if renamed")


class GitHubCommit(BaseModel):
    """A commit as returned by the commits API."""

    model_config = ConfigDict(frozen=True)

    sha: str = Field(..., description="Commit SHA")
    message: str = Field(default="", description="Commit message")
    author_name: str = Field(default="", description="Author name")
    author_avatar: str = Field(default="", description="Author avatar URL")
    date: str | None = Field(None, description="Author date (ISO-8601)")
    files: list[GitHubFile] = Field(default_factory=list, description="Changed files")


class TreeEntry(BaseModel):
    """One entry of a recursive git tree listing."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Repository-relative path")
    type: str = Field(..., description="blob or tree")
    size: int = Field(default=0, description="Blob size in bytes")


class PushCommit(BaseModel):
    """A commit embedded in a push payload."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Commit SHA")
    message: str = Field(default="", description="Commit message")
    timestamp: str | None = Field(None, description="Commit timestamp")
    author_name: str = Field(default="", description="Author name")
    added: list[str] = Field(default_factory=list, description="Added paths")
    modified: list[str] = Field(default_factory=list, description="Modified paths")
    removed: list[str] = Field(default_factory=list, description="Removed paths")

    @property
    def changed_files(self) -> list[str]:
        """Every path touched by the commit."""
        return [*self.added, *self.modified, *self.removed]


class PullRequestRef(BaseModel):
    """The parts of a pull request a webhook needs."""

    model_config = ConfigDict(frozen=True)

    number: int = Field(..., description="PR number")
    title: str = Field(default="", description="PR title")
    state: str = Field(default="open", description="PR state")
    merged: bool = Field(default=False, description="Whether the PR was merged")
    base_ref: str = Field(default="", description="Base branch")
    head_ref: str = Field(default="", description="Head branch")


class ReleaseRef(BaseModel):
    """The parts of a release a webhook needs."""

    model_config = ConfigDict(frozen=True)

    tag_name: str = Field(..., description="Release tag")
    name: str | None = Field(None, description="Release name")


class WebhookPayload(BaseModel):
    """Parsed webhook payload."""

    action: str | None = Field(None, description="Webhook action")
    sender: GitHubUser | None = Field(None, description="Event sender")
    repository: GitHubRepository | None = Field(None, description="Repository")
    ref: str | None = Field(None, description="Git ref (push events)")
    before: str | None = Field(None, description="SHA before push")
    after: str | None = Field(None, description="SHA after push")
    commits: list[PushCommit] = Field(default_factory=list, description="Pushed commits")
    head_commit: PushCommit | None = Field(None, description="Head commit of a push")
    pull_request: PullRequestRef | None = Field(None, description="Pull request")
    release: ReleaseRef | None = Field(None, description="Release")
    raw: dict[str, Any] = Field(default_factory=dict, description="Original payload")
