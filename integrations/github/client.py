"""GitHub API client for Strata.

This module provides an async client for the parts of the GitHub REST API
the ingestion pipeline reads: repository metadata, recursive trees, file
contents, commit history and diffs, and pull request files. Authentication
is via GitHub App or personal access token.
"""

import asyncio
import base64
import hashlib
import hmac
import time
from typing import Any
from urllib.parse import urlparse

import httpx
import jwt
import structlog
from pydantic import BaseModel, ConfigDict, Field

from .models import (
    FileStatus,
    GitHubCommit,
    GitHubFile,
    GitHubRepository,
    GitHubUser,
    TreeEntry,
)

logger = structlog.get_logger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class GitHubClientError(Exception):
    """Raised when a GitHub API call fails or a URL cannot be parsed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubClientConfig(BaseModel):
    """Configuration for GitHub client."""

    model_config = ConfigDict(frozen=True)

    # GitHub App authentication
    app_id: int | None = Field(None, description="GitHub App ID")
    private_key: str | None = Field(None, description="GitHub App private key (PEM)")
    installation_id: int | None = Field(None, description="Installation ID")

    # Personal access token authentication
    access_token: str | None = Field(None, description="Personal access token")

    # API settings
    base_url: str = Field(default="https://api.github.com", description="API base URL")
    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    max_retries: int = Field(default=3, ge=1, description="Maximum attempts per request")
    retry_backoff: float = Field(default=1.0, ge=0, description="Base backoff in seconds")

    # Webhook settings
    webhook_secret: str | None = Field(None, description="Webhook secret for validation")


def parse_github_url(url: str) -> tuple[str, str]:
    """Split a repository URL into ``(owner, repo)``.

    Accepts ``https://github.com/owner/repo``, with or without a trailing
    slash or ``.git`` suffix.

    Raises:
        GitHubClientError: If the URL has fewer than two path segments.
    """
    path = urlparse(url.strip()).path if "://" in url else url.strip()
    parts = [p for p in path.split("/") if p]
    if len(parts) < 2:
        raise GitHubClientError(f"Invalid GitHub repository URL: {url}")
    owner, repo = parts[-2], parts[-1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return owner, repo


class GitHubClient:
    """Async GitHub API client.

    Supports authentication via GitHub App or personal access token.
    """

    def __init__(
        self,
        config: GitHubClientConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the GitHub client.

        Args:
            config: Client configuration.
            transport: Optional httpx transport, used by tests.
        """
        self.config = config
        self._transport = transport
        self._logger = logger.bind(component="github_client")
        self._http_client: httpx.AsyncClient | None = None
        self._installation_token: str | None = None
        self._token_expires_at: float = 0

    async def __aenter__(self) -> "GitHubClient":
        """Enter async context."""
        await self._ensure_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Exit async context."""
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure HTTP client is initialized."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                headers={"Accept": "application/vnd.github+json"},
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _generate_jwt(self) -> str:
        """Generate a JWT for GitHub App authentication."""
        if not self.config.app_id or not self.config.private_key:
            raise GitHubClientError("GitHub App credentials not configured")

        now = int(time.time())
        payload = {
            "iat": now - 60,  # clock drift allowance
            "exp": now + 600,
            "iss": self.config.app_id,
        }

        token: str = jwt.encode(payload, self.config.private_key, algorithm="RS256")
        return token

    async def _get_installation_token(self) -> str:
        """Get or refresh the installation access token."""
        if self._installation_token and time.time() < self._token_expires_at - 60:
            return self._installation_token

        if not self.config.installation_id:
            raise GitHubClientError("Installation ID not configured")

        client = await self._ensure_client()
        response = await client.post(
            f"/app/installations/{self.config.installation_id}/access_tokens",
            headers={"Authorization": f"Bearer {self._generate_jwt()}"},
        )
        if response.status_code >= 400:
            raise GitHubClientError(
                f"Failed to obtain installation token: {response.status_code}",
                status_code=response.status_code,
            )

        token: str = response.json()["token"]
        self._installation_token = token
        # Installation tokens live for one hour
        self._token_expires_at = time.time() + 3600

        self._logger.debug("obtained_installation_token")
        return token

    async def _get_auth_header(self, token: str | None = None) -> dict[str, str]:
        """Get the authorization header, preferring a per-call token."""
        if token or self.config.access_token:
            return {"Authorization": f"Bearer {token or self.config.access_token}"}
        elif self.config.app_id:
            return {"Authorization": f"Bearer {await self._get_installation_token()}"}
        else:
            return {}

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> Any:
        """Make an authenticated API request.

        Args:
            method: HTTP method.
            path: API path.
            params: Query parameters.
            token: Access token overriding the configured credentials.

        Returns:
            Response JSON data.

        Raises:
            GitHubClientError: On a non-retryable error status or when
                retries are exhausted.
        """
        client = await self._ensure_client()
        headers = await self._get_auth_header(token)
        last_error = ""
        last_status: int | None = None

        for attempt in range(self.config.max_retries):
            try:
                response = await client.request(method, path, params=params, headers=headers)
            except httpx.TransportError as e:
                last_error, last_status = str(e), None
                self._logger.warning("request_transport_error", path=path, attempt=attempt + 1)
                await self._backoff(attempt)
                continue

            if response.status_code == 401 and self.config.app_id and not token:
                # Installation token expired; refresh and retry
                self._installation_token = None
                headers = await self._get_auth_header()
                last_error, last_status = "Unauthorized", 401
                continue

            if response.status_code in RETRYABLE_STATUS:
                last_error, last_status = response.text, response.status_code
                self._logger.warning(
                    "request_failed_retrying",
                    path=path,
                    attempt=attempt + 1,
                    status=response.status_code,
                )
                await self._backoff(attempt)
                continue

            if response.status_code >= 400:
                raise GitHubClientError(
                    f"GitHub API error {response.status_code} for {path}",
                    status_code=response.status_code,
                )

            return response.json()

        raise GitHubClientError(
            f"GitHub API request to {path} failed after "
            f"{self.config.max_retries} attempts: {last_error}",
            status_code=last_status,
        )

    async def _backoff(self, attempt: int) -> None:
        if attempt < self.config.max_retries - 1:
            await asyncio.sleep(self.config.retry_backoff * 2**attempt)

    def verify_webhook_signature(self, payload: bytes, signature: str | None) -> bool:
        """Verify webhook payload signature.

        Args:
            payload: Raw request body.
            signature: X-Hub-Signature-256 header value.

        Returns:
            True if signature is valid.
        """
        if not self.config.webhook_secret:
            self._logger.warning("webhook_secret_not_configured")
            return False
        if not signature:
            return False

        expected = hmac.new(
            self.config.webhook_secret.encode(),
            payload,
            hashlib.sha256,
        ).hexdigest()

        return hmac.compare_digest(f"sha256={expected}", signature)

    # Repository operations

    async def get_repository(
        self, owner: str, repo: str, token: str | None = None
    ) -> GitHubRepository:
        """Get repository information."""
        data = await self._request("GET", f"/repos/{owner}/{repo}", token=token)
        return self._parse_repository(data)

    async def get_tree(
        self, owner: str, repo: str, ref: str, token: str | None = None
    ) -> list[TreeEntry]:
        """List every blob reachable from ``ref``.

        Args:
            owner: Repository owner.
            repo: Repository name.
            ref: Branch, tag or SHA.
            token: Optional access token.

        Returns:
            Blob entries of the recursive tree.
        """
        data = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/git/trees/{ref}",
            params={"recursive": "1"},
            token=token,
        )
        if data.get("truncated"):
            self._logger.warning("tree_truncated", repo=f"{owner}/{repo}", ref=ref)
        return [
            TreeEntry(path=e["path"], type=e["type"], size=e.get("size", 0))
            for e in data.get("tree", [])
            if e.get("type") == "blob"
        ]

    # Commit operations

    async def list_commits(
        self, owner: str, repo: str, per_page: int = 25, token: str | None = None
    ) -> list[GitHubCommit]:
        """List recent commits on the default branch, newest first."""
        data = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/commits",
            params={"per_page": per_page},
            token=token,
        )
        commits = [self._parse_commit(c) for c in data]
        return sorted(commits, key=lambda c: c.date or "", reverse=True)

    async def get_commit(
        self, owner: str, repo: str, sha: str, token: str | None = None
    ) -> GitHubCommit:
        """Get commit details, including changed files and their patches."""
        data = await self._request("GET", f"/repos/{owner}/{repo}/commits/{sha}", token=token)
        return self._parse_commit(data)

    async def get_pull_request_files(
        self, owner: str, repo: str, pr_number: int, token: str | None = None
    ) -> list[GitHubFile]:
        """Get files changed in a pull request."""
        data = await self._request(
            "GET",
            f"/repos/{owner}/{repo}/pulls/{pr_number}/files",
            params={"per_page": 100},
            token=token,
        )
        return [self._parse_file(f) for f in data]

    # File content operations

    async def get_file_content(
        self,
        owner: str,
        repo: str,
        path: str,
        ref: str | None = None,
        token: str | None = None,
    ) -> str:
        """Get file content from repository.

        Returns:
            File content as string. Empty for directories and binary blobs.
        """
        params = {"ref": ref} if ref else None
        data = await self._request(
            "GET", f"/repos/{owner}/{repo}/contents/{path}", params=params, token=token
        )

        if isinstance(data, dict) and data.get("encoding") == "base64":
            try:
                return base64.b64decode(data.get("content", "")).decode("utf-8")
            except UnicodeDecodeError:
                self._logger.debug("binary_file_skipped", path=path)
                return ""

        return ""

    async def file_exists(
        self, owner: str, repo: str, path: str, token: str | None = None
    ) -> bool:
        """Whether ``path`` exists on the default branch.

        Raises:
            GitHubClientError: For failures other than 404.
        """
        try:
            await self._request("GET", f"/repos/{owner}/{repo}/contents/{path}", token=token)
        except GitHubClientError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    # Parsing helpers

    def _parse_user(self, data: dict[str, Any] | None) -> GitHubUser | None:
        if not data or "id" not in data:
            return None
        return GitHubUser(
            id=data["id"],
            login=data.get("login", "unknown"),
            avatar_url=data.get("avatar_url"),
        )

    def _parse_repository(self, data: dict[str, Any]) -> GitHubRepository:
        owner = self._parse_user(data.get("owner")) or GitHubUser(id=0, login="unknown")
        return GitHubRepository(
            id=data["id"],
            name=data["name"],
            full_name=data["full_name"],
            owner=owner,
            private=data.get("private", False),
            html_url=data["html_url"],
            default_branch=data.get("default_branch", "main"),
        )

    def _parse_file(self, data: dict[str, Any]) -> GitHubFile:
        return GitHubFile(
            filename=data["filename"],
            status=FileStatus(data.get("status", "modified")),
            additions=data.get("additions", 0),
            deletions=data.get("deletions", 0),
            patch=data.get("patch"),
            previous_filename=data.get("previous_filename"),
        )

    def _parse_commit(self, data: dict[str, Any]) -> GitHubCommit:
        commit_data = data.get("commit", {})
        git_author = commit_data.get("author") or {}
        account = data.get("author") or {}

        return GitHubCommit(
            sha=data["sha"],
            message=commit_data.get("message", ""),
            author_name=git_author.get("name") or account.get("login", ""),
            author_avatar=account.get("avatar_url") or "",
            date=git_author.get("date"),
            files=[self._parse_file(f) for f in data.get("files", [])],
        )
