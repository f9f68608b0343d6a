"""LLM-backed file and commit summarization.

CodeSummarizer implements both the FileSummarizer and CommitSummarizer
contracts on top of an LLMClient. Inputs are truncated to each template's
token budget with tiktoken before they are sent.
"""

import contextlib

import structlog
import tiktoken

from core.ingestion.collaborators import CommitSummarizer, FileSummarizer
from core.ingestion.models import Document

from .client import LLMClient, LLMClientError
from .prompts import COMMIT_SUMMARY_TEMPLATE, FILE_SUMMARY_TEMPLATE

logger = structlog.get_logger(__name__)

TRUNCATION_MARKER = "\n... [truncated]"


class TokenCounter:
    """Counts and truncates text by tokens.

    Uses tiktoken's cl100k_base encoding as an approximation of the
    model tokenizer.
    """

    def __init__(self, encoding: str = "cl100k_base") -> None:
        self._encoder: tiktoken.Encoding | None = None
        with contextlib.suppress(Exception):
            self._encoder = tiktoken.get_encoding(encoding)

    def count(self, text: str) -> int:
        """Count tokens in text."""
        if self._encoder:
            return len(self._encoder.encode(text))
        # Rough estimate of 4 chars per token
        return len(text) // 4

    def truncate(self, text: str, max_tokens: int) -> str:
        """Cut ``text`` to at most ``max_tokens`` tokens, marking the cut."""
        if self._encoder:
            tokens = self._encoder.encode(text)
            if len(tokens) <= max_tokens:
                return text
            return self._encoder.decode(tokens[:max_tokens]) + TRUNCATION_MARKER

        limit = max_tokens * 4
        if len(text) <= limit:
            return text
        return text[:limit] + TRUNCATION_MARKER


class CodeSummarizer(FileSummarizer, CommitSummarizer):
    """Summarizes files and commit diffs with an LLM."""

    def __init__(self, client: LLMClient, token_counter: TokenCounter | None = None) -> None:
        """Initialize the summarizer.

        Args:
            client: LLM client, constructed once at startup.
            token_counter: Token counter used for truncation.
        """
        self.client = client
        self.tokens = token_counter or TokenCounter()
        self._logger = logger.bind(component="code_summarizer")

    async def summarize_file(self, document: Document) -> str:
        """Summarize a source file.

        Returns:
            The summary, or an empty string for empty files.

        Raises:
            LLMClientError: If the completion fails.
        """
        if not document.content.strip():
            return ""

        template = FILE_SUMMARY_TEMPLATE
        code = self.tokens.truncate(document.content, template.max_input_tokens)
        response = await self.client.complete(
            template.system_prompt,
            template.format_user_message(path=document.path, code=code),
            max_tokens=template.max_output_tokens,
        )
        return response.content.strip()

    async def summarize_commit(self, diff: str) -> str:
        """Summarize a commit diff.

        Returns:
            The summary. Completion failures are reported as a message
            starting with "Failed to", which callers treat as a failure.
        """
        template = COMMIT_SUMMARY_TEMPLATE
        truncated = self.tokens.truncate(diff, template.max_input_tokens)
        try:
            response = await self.client.complete(
                template.system_prompt,
                template.format_user_message(diff=truncated),
                max_tokens=template.max_output_tokens,
            )
        except LLMClientError as e:
            self._logger.warning("commit_summary_failed", error=str(e))
            return f"Failed to generate commit summary: {e}"
        return response.content.strip()
