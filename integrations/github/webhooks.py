"""GitHub webhook handlers for Strata.

This module turns verified GitHub webhook deliveries into pipeline events:
pushes to the default branch queue new commits and a delta reindex, merged
pull requests reindex their files, releases are recorded, and deleted
repositories archive their projects.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.ingestion.events import (
    CommitProcessRequested,
    FilesReindexRequested,
    ReleaseAnalysisRequested,
    SmartReindexRequested,
)
from core.ingestion.models import CommitInfo
from core.ingestion.reindex import is_significant_change
from core.store import Project, RecordStore

from .client import GitHubClient, parse_github_url
from .models import (
    GitHubRepository,
    GitHubUser,
    PullRequestRef,
    PushCommit,
    ReleaseRef,
    WebhookEvent,
    WebhookPayload,
)

logger = structlog.get_logger(__name__)

EventSender = Callable[[BaseModel], Awaitable[None]]

RELEASE_ACTIONS = ("published", "created", "released")


class WebhookPayloadError(ValueError):
    """Raised when a webhook body is missing required fields."""

    pass


class WebhookResult(BaseModel):
    """Result of processing a webhook."""

    model_config = ConfigDict(frozen=True)

    success: bool = Field(..., description="Whether processing succeeded")
    event_type: str = Field(..., description="Event type processed")
    action: str | None = Field(None, description="Event action")
    message: str = Field(default="", description="Result message")
    data: dict[str, Any] = Field(default_factory=dict, description="Result data")


def _unique(paths: list[str]) -> list[str]:
    return list(dict.fromkeys(paths))


class WebhookHandler(ABC):
    """Abstract base class for webhook handlers.

    Handlers receive the projects tracking the payload's repository and
    communicate with the pipeline only by sending events.
    """

    def __init__(self, store: RecordStore, send: EventSender) -> None:
        self.store = store
        self.send = send

    @abstractmethod
    def can_handle(self, event_type: WebhookEvent, action: str | None) -> bool:
        """Check if this handler can process the event."""

    @abstractmethod
    async def handle(
        self,
        payload: WebhookPayload,
        repo: GitHubRepository,
        projects: list[Project],
        client: GitHubClient,
    ) -> WebhookResult:
        """Handle the webhook event.

        Args:
            payload: Parsed webhook payload.
            repo: Repository the delivery is for.
            projects: Active projects tracking the repository.
            client: GitHub API client.

        Returns:
            WebhookResult with processing outcome.
        """


class PushEventHandler(WebhookHandler):
    """Handler for push events to the default branch.

    Unknown pushed commits are queued for summarization, then the head
    commit's changed files are reindexed: a smart reindex for significant
    change sets, a plain file reindex otherwise.
    """

    def __init__(self, store: RecordStore, send: EventSender) -> None:
        super().__init__(store, send)
        self._logger = logger.bind(handler="push")

    def can_handle(self, event_type: WebhookEvent, action: str | None) -> bool:
        return event_type == WebhookEvent.PUSH

    async def handle(
        self,
        payload: WebhookPayload,
        repo: GitHubRepository,
        projects: list[Project],
        client: GitHubClient,
    ) -> WebhookResult:
        head = payload.head_commit

        if head is None:
            return WebhookResult(
                success=True,
                event_type=WebhookEvent.PUSH.value,
                message="No head commit in push",
            )

        if payload.ref != f"refs/heads/{repo.default_branch}":
            self._logger.debug("push_ignored_non_default_branch", ref=payload.ref)
            return WebhookResult(
                success=True,
                event_type=WebhookEvent.PUSH.value,
                message=f"Ignored push to non-default branch {payload.ref}",
            )

        changed_files = _unique(head.changed_files)
        significant = is_significant_change(changed_files)
        queued = 0

        for project in projects:
            known = await self.store.list_commit_hashes(project.id)
            for commit in payload.commits:
                if commit.id in known:
                    self._logger.debug("commit_already_known", commit=commit.id[:8])
                    continue
                await self.send(
                    CommitProcessRequested(
                        project_id=project.id,
                        repo_url=repo.html_url,
                        commit=CommitInfo(
                            commit_hash=commit.id,
                            message=commit.message,
                            author_name=commit.author_name,
                            date=commit.timestamp,
                        ),
                        webhook_triggered=True,
                    )
                )
                queued += 1

            if not changed_files:
                continue
            if significant:
                await self.send(
                    SmartReindexRequested(
                        project_id=project.id,
                        repo_url=repo.html_url,
                        changed_files=changed_files,
                        commit_hash=head.id,
                        reason="push",
                    )
                )
            else:
                await self.send(
                    FilesReindexRequested(
                        project_id=project.id,
                        repo_url=repo.html_url,
                        files=changed_files,
                        reason="push",
                    )
                )

        self._logger.info(
            "push_processed",
            repo=repo.full_name,
            projects=len(projects),
            commits_queued=queued,
            changed_files=len(changed_files),
            significant=significant,
        )
        return WebhookResult(
            success=True,
            event_type=WebhookEvent.PUSH.value,
            message=f"Processed push to {payload.ref} with {len(payload.commits)} commits",
            data={
                "repo": repo.full_name,
                "commits_queued": queued,
                "changed_files": changed_files,
                "smart_reindex": significant,
            },
        )


class PullRequestEventHandler(WebhookHandler):
    """Handler for merged pull requests."""

    def __init__(self, store: RecordStore, send: EventSender) -> None:
        super().__init__(store, send)
        self._logger = logger.bind(handler="pull_request")

    def can_handle(self, event_type: WebhookEvent, action: str | None) -> bool:
        return event_type == WebhookEvent.PULL_REQUEST and action == "closed"

    async def handle(
        self,
        payload: WebhookPayload,
        repo: GitHubRepository,
        projects: list[Project],
        client: GitHubClient,
    ) -> WebhookResult:
        pr = payload.pull_request

        if pr is None or not pr.merged:
            return WebhookResult(
                success=True,
                event_type=WebhookEvent.PULL_REQUEST.value,
                action=payload.action,
                message="Pull request closed without merge",
            )

        owner, name = parse_github_url(repo.html_url)
        changed = await client.get_pull_request_files(owner, name, pr.number)
        files = _unique([f.filename for f in changed])

        if files:
            for project in projects:
                await self.send(
                    FilesReindexRequested(
                        project_id=project.id,
                        repo_url=repo.html_url,
                        files=files,
                        reason="pull_request",
                    )
                )

        self._logger.info(
            "merged_pr_processed", repo=repo.full_name, pr_number=pr.number, files=len(files)
        )
        return WebhookResult(
            success=True,
            event_type=WebhookEvent.PULL_REQUEST.value,
            action=payload.action,
            message=f"Processed merged PR #{pr.number}",
            data={"repo": repo.full_name, "pr_number": pr.number, "files": files},
        )


class ReleaseEventHandler(WebhookHandler):
    """Handler for published releases."""

    def can_handle(self, event_type: WebhookEvent, action: str | None) -> bool:
        return event_type == WebhookEvent.RELEASE and action in RELEASE_ACTIONS

    async def handle(
        self,
        payload: WebhookPayload,
        repo: GitHubRepository,
        projects: list[Project],
        client: GitHubClient,
    ) -> WebhookResult:
        release = payload.release

        if release is None:
            return WebhookResult(
                success=False,
                event_type=WebhookEvent.RELEASE.value,
                action=payload.action,
                message="No release in payload",
            )

        for project in projects:
            await self.send(
                ReleaseAnalysisRequested(
                    project_id=project.id,
                    repo_url=repo.html_url,
                    release_action=payload.action or "",
                    release_name=release.name,
                    release_tag=release.tag_name,
                )
            )

        return WebhookResult(
            success=True,
            event_type=WebhookEvent.RELEASE.value,
            action=payload.action,
            message=f"Processed release {release.tag_name}",
            data={"repo": repo.full_name, "tag": release.tag_name},
        )


class RepositoryEventHandler(WebhookHandler):
    """Archives projects whose repository was deleted."""

    def __init__(self, store: RecordStore, send: EventSender) -> None:
        super().__init__(store, send)
        self._logger = logger.bind(handler="repository")

    def can_handle(self, event_type: WebhookEvent, action: str | None) -> bool:
        return event_type == WebhookEvent.REPOSITORY and action == "deleted"

    async def handle(
        self,
        payload: WebhookPayload,
        repo: GitHubRepository,
        projects: list[Project],
        client: GitHubClient,
    ) -> WebhookResult:
        archived = []
        for project in projects:
            await self.store.archive_project(project.id)
            archived.append(project.id)

        self._logger.info("projects_archived", project_ids=archived)
        return WebhookResult(
            success=True,
            event_type=WebhookEvent.REPOSITORY.value,
            action=payload.action,
            message=f"Archived {len(archived)} projects",
            data={"archived": archived},
        )


class WebhookProcessor:
    """Processes GitHub webhooks by routing to appropriate handlers."""

    def __init__(self, store: RecordStore, send: EventSender, client: GitHubClient) -> None:
        """Initialize the processor.

        Args:
            store: Record store used to resolve projects.
            send: Event sender, usually ``LocalEventBus.send``.
            client: GitHub API client.
        """
        self.store = store
        self.send = send
        self.client = client
        self._handlers: list[WebhookHandler] = []
        self._logger = logger.bind(component="webhook_processor")

    def register_handler(self, handler: WebhookHandler) -> None:
        """Register a webhook handler."""
        self._handlers.append(handler)

    def register_defaults(self) -> None:
        """Register the push, pull request, release and repository handlers."""
        for handler_cls in (
            PushEventHandler,
            PullRequestEventHandler,
            ReleaseEventHandler,
            RepositoryEventHandler,
        ):
            self.register_handler(handler_cls(self.store, self.send))

    def parse_payload(self, raw_payload: dict[str, Any]) -> WebhookPayload:
        """Parse raw webhook JSON into a WebhookPayload.

        Raises:
            WebhookPayloadError: If a present section is malformed.
        """
        try:
            return WebhookPayload(
                action=raw_payload.get("action"),
                sender=self._parse_sender(raw_payload.get("sender")),
                repository=self._parse_repository(raw_payload.get("repository")),
                ref=raw_payload.get("ref"),
                before=raw_payload.get("before"),
                after=raw_payload.get("after"),
                commits=[self._parse_push_commit(c) for c in raw_payload.get("commits") or []],
                head_commit=self._parse_push_commit(raw_payload["head_commit"])
                if raw_payload.get("head_commit")
                else None,
                pull_request=self._parse_pull_request(raw_payload.get("pull_request")),
                release=self._parse_release(raw_payload.get("release")),
                raw=raw_payload,
            )
        except (KeyError, TypeError, ValidationError) as e:
            raise WebhookPayloadError(f"Malformed webhook payload: {e}") from e

    async def process(self, event_type: str, raw_payload: dict[str, Any]) -> WebhookResult:
        """Process a webhook delivery.

        Args:
            event_type: X-GitHub-Event header value.
            raw_payload: Raw JSON payload.

        Returns:
            WebhookResult from the handler, or an ignored result.

        Raises:
            WebhookPayloadError: If the payload is malformed or lacks a
                repository for a handled event.
        """
        try:
            event = WebhookEvent(event_type)
        except ValueError:
            self._logger.debug("unsupported_event", event_type=event_type)
            return WebhookResult(
                success=True, event_type=event_type, message="Event type not handled"
            )

        payload = self.parse_payload(raw_payload)
        action = payload.action
        handler = next((h for h in self._handlers if h.can_handle(event, action)), None)

        if handler is None:
            self._logger.debug("no_handler_for_event", event_type=event.value, action=action)
            return WebhookResult(
                success=True,
                event_type=event.value,
                action=action,
                message="No handler registered for this event",
            )

        repo = payload.repository
        if repo is None:
            raise WebhookPayloadError(f"{event.value} payload has no repository")

        projects = await self.store.find_projects_by_repo(repo.html_url)
        self._logger.info(
            "processing_webhook",
            event_type=event.value,
            action=action,
            repo=repo.full_name,
            projects=len(projects),
        )
        if not projects:
            return WebhookResult(
                success=True,
                event_type=event.value,
                action=action,
                message="No projects track this repository",
            )

        return await handler.handle(payload, repo, projects, self.client)

    # Parsing helpers

    def _parse_sender(self, data: dict[str, Any] | None) -> GitHubUser | None:
        if not data:
            return None
        return GitHubUser(id=data["id"], login=data["login"], avatar_url=data.get("avatar_url"))

    def _parse_repository(self, data: dict[str, Any] | None) -> GitHubRepository | None:
        if not data:
            return None
        owner_data = data.get("owner") or {}
        return GitHubRepository(
            id=data["id"],
            name=data["name"],
            full_name=data["full_name"],
            owner=GitHubUser(
                id=owner_data.get("id", 0),
                login=owner_data.get("login") or owner_data.get("name") or "unknown",
            ),
            private=data.get("private", False),
            html_url=data["html_url"],
            default_branch=data.get("default_branch") or data.get("master_branch") or "main",
        )

    def _parse_push_commit(self, data: dict[str, Any]) -> PushCommit:
        return PushCommit(
            id=data["id"],
            message=data.get("message", ""),
            timestamp=data.get("timestamp"),
            author_name=(data.get("author") or {}).get("name", ""),
            added=data.get("added") or [],
            modified=data.get("modified") or [],
            removed=data.get("removed") or [],
        )

    def _parse_pull_request(self, data: dict[str, Any] | None) -> PullRequestRef | None:
        if not data:
            return None
        return PullRequestRef(
            number=data["number"],
            title=data.get("title", ""),
            state=data.get("state", "open"),
            merged=bool(data.get("merged")),
            base_ref=(data.get("base") or {}).get("ref", ""),
            head_ref=(data.get("head") or {}).get("ref", ""),
        )

    def _parse_release(self, data: dict[str, Any] | None) -> ReleaseRef | None:
        if not data:
            return None
        return ReleaseRef(tag_name=data["tag_name"], name=data.get("name"))
