"""Contracts for the external services the pipeline depends on.

Each collaborator is fallible and may be rate-limited independently. The
pipeline only depends on these interfaces; concrete adapters live in
``integrations.github``, ``core.llm`` and ``core.embeddings``.
"""

from abc import ABC, abstractmethod

from .models import CommitInfo, Document


class RepoLister(ABC):
    """Lists repository files and recent commits."""

    @abstractmethod
    async def list_files(self, repo_url: str, token: str | None = None) -> list[Document]:
        """Return every indexable file in the repository.

        Raises:
            Exception: Any failure is fatal to project ingestion.
        """

    @abstractmethod
    async def list_commits(self, repo_url: str) -> list[CommitInfo]:
        """Return recent commits, newest first."""


class FileSummarizer(ABC):
    """Produces a natural-language summary of a source file."""

    @abstractmethod
    async def summarize_file(self, document: Document) -> str:
        """Summarize a document. An empty string means nothing worth indexing."""


class Embedder(ABC):
    """Turns text into a vector."""

    @abstractmethod
    async def embed_text(self, text: str) -> list[float]:
        """Embed a single text."""


class CommitDiffFetcher(ABC):
    """Fetches the textual diff of a commit."""

    @abstractmethod
    async def fetch_commit_diff(self, repo_url: str, commit_hash: str) -> str:
        """Return the commit diff."""


class CommitSummarizer(ABC):
    """Summarizes a commit diff."""

    @abstractmethod
    async def summarize_commit(self, diff: str) -> str:
        """Return a summary of ``diff``.

        Failures may be reported as an empty string or as text containing
        "Failed to" instead of raising.
        """


class RepoFileSource(ABC):
    """Reads single files from the upstream repository."""

    @abstractmethod
    async def file_exists(self, repo_url: str, path: str) -> bool:
        """Whether ``path`` exists on the default branch."""

    @abstractmethod
    async def get_file_content(self, repo_url: str, path: str) -> str | None:
        """Return the content of ``path``, or None if it cannot be read."""
