"""Repository access for the ingestion pipeline.

GitHubRepoLoader adapts GitHubClient to the collaborator contracts the
pipeline depends on: file and commit listing, commit diffs, and single-file
reads for delta reindexing.
"""

import asyncio
import fnmatch

import structlog

from core.ingestion.collaborators import CommitDiffFetcher, RepoFileSource, RepoLister
from core.ingestion.models import CommitInfo, Document

from .client import GitHubClient, GitHubClientError, parse_github_url

logger = structlog.get_logger(__name__)

DEFAULT_IGNORE_PATTERNS = (
    "package-lock.json",
    "pnpm-lock.yaml",
    "yarn.lock",
    "bun.lockb",
    "*.jpg",
    "*.jpeg",
    "*.png",
    "*.gif",
    "*.svg",
    "*.ico",
    "*.ttf",
    "*.woff",
    "*.woff2",
    "*.mp4",
    "*.webm",
    "*.mp3",
    "*.wav",
    "*.ogg",
    "*.xls",
    "*.xlsx",
    "*.ppt",
    "*.pptx",
)

COMMIT_PAGE_SIZE = 25


def is_ignored(path: str, patterns: tuple[str, ...] = DEFAULT_IGNORE_PATTERNS) -> bool:
    """Whether ``path`` matches an ignore pattern by file name."""
    name = path.rsplit("/", 1)[-1]
    return any(fnmatch.fnmatch(name, pattern) for pattern in patterns)


def format_commit_diff(files: list[tuple[str, str | None]]) -> str:
    """Join ``(filename, patch)`` pairs into a single textual diff."""
    return "\n\n".join(f"--- {name}\n{patch or ''}" for name, patch in files)


class GitHubRepoLoader(RepoLister, CommitDiffFetcher, RepoFileSource):
    """Reads repositories through the GitHub REST API.

    Attributes:
        client: GitHub API client.
        max_commits: Number of most recent commits returned by list_commits.
        max_concurrency: Parallel content fetches while listing files.
        ignore_patterns: File name globs never listed.
    """

    def __init__(
        self,
        client: GitHubClient,
        max_commits: int = 15,
        max_concurrency: int = 3,
        ignore_patterns: tuple[str, ...] = DEFAULT_IGNORE_PATTERNS,
    ) -> None:
        self.client = client
        self.max_commits = max_commits
        self.max_concurrency = max_concurrency
        self.ignore_patterns = ignore_patterns
        self._logger = logger.bind(component="repo_loader")

    async def list_files(self, repo_url: str, token: str | None = None) -> list[Document]:
        """Load every non-ignored text file on the default branch.

        Raises:
            GitHubClientError: If the repository or its tree cannot be read.
        """
        owner, repo = parse_github_url(repo_url)
        repository = await self.client.get_repository(owner, repo, token=token)
        entries = await self.client.get_tree(
            owner, repo, repository.default_branch, token=token
        )
        paths = [e.path for e in entries if not is_ignored(e.path, self.ignore_patterns)]

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def load(path: str) -> Document | None:
            async with semaphore:
                content = await self.client.get_file_content(
                    owner, repo, path, ref=repository.default_branch, token=token
                )
            if not content:
                return None
            return Document(path=path, content=content)

        loaded = await asyncio.gather(*(load(p) for p in paths))
        documents = [d for d in loaded if d is not None]

        self._logger.info(
            "repository_loaded",
            repo=f"{owner}/{repo}",
            files=len(documents),
            ignored=len(entries) - len(paths),
        )
        return documents

    async def list_commits(self, repo_url: str) -> list[CommitInfo]:
        """Return up to ``max_commits`` recent commits, newest first."""
        owner, repo = parse_github_url(repo_url)
        commits = await self.client.list_commits(owner, repo, per_page=COMMIT_PAGE_SIZE)
        return [
            CommitInfo(
                commit_hash=c.sha,
                message=c.message,
                author_name=c.author_name,
                author_avatar=c.author_avatar,
                date=c.date,
            )
            for c in commits[: self.max_commits]
        ]

    async def fetch_commit_diff(self, repo_url: str, commit_hash: str) -> str:
        owner, repo = parse_github_url(repo_url)
        commit = await self.client.get_commit(owner, repo, commit_hash)
        return format_commit_diff([(f.filename, f.patch) for f in commit.files])

    async def file_exists(self, repo_url: str, path: str) -> bool:
        owner, repo = parse_github_url(repo_url)
        return await self.client.file_exists(owner, repo, path)

    async def get_file_content(self, repo_url: str, path: str) -> str | None:
        owner, repo = parse_github_url(repo_url)
        try:
            content = await self.client.get_file_content(owner, repo, path)
        except GitHubClientError as e:
            self._logger.warning("file_content_unavailable", path=path, error=str(e))
            return None
        return content or None
