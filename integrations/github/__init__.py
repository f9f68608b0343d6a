"""GitHub integration for Strata.

This module provides:
- GitHub API client for repository, commit and content reads
- Repository loader implementing the pipeline's collaborator contracts
- Webhook handlers for push, pull request, release and repository events
"""

from .client import GitHubClient, GitHubClientConfig, GitHubClientError, parse_github_url
from .loader import DEFAULT_IGNORE_PATTERNS, GitHubRepoLoader, format_commit_diff, is_ignored
from .models import (
    GitHubCommit,
    GitHubFile,
    GitHubRepository,
    PushCommit,
    TreeEntry,
    WebhookEvent,
    WebhookPayload,
)
from .webhooks import (
    WebhookHandler,
    WebhookPayloadError,
    WebhookProcessor,
    WebhookResult,
)

__all__ = [
    # Client
    "GitHubClient",
    "GitHubClientConfig",
    "GitHubClientError",
    "parse_github_url",
    # Loader
    "GitHubRepoLoader",
    "DEFAULT_IGNORE_PATTERNS",
    "format_commit_diff",
    "is_ignored",
    # Models
    "GitHubRepository",
    "GitHubCommit",
    "GitHubFile",
    "PushCommit",
    "TreeEntry",
    "WebhookEvent",
    "WebhookPayload",
    # Webhooks
    "WebhookHandler",
    "WebhookPayloadError",
    "WebhookProcessor",
    "WebhookResult",
]
