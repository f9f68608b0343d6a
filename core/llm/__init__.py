"""LLM module for Strata.

This module provides the Claude API client, summarization prompt
templates, and the summarizer used by the ingestion pipeline.
"""

from core.llm.client import (
    ClaudeClient,
    LLMClient,
    LLMClientError,
    LLMConfig,
    LLMResponse,
    MockClaudeClient,
    RateLimitError,
)
from core.llm.prompts import PromptTemplate, SummaryKind, get_prompt_template
from core.llm.summarizer import CodeSummarizer, TokenCounter

__all__ = [
    # Client
    "ClaudeClient",
    "MockClaudeClient",
    "LLMClient",
    "LLMClientError",
    "LLMConfig",
    "LLMResponse",
    "RateLimitError",
    # Summarization
    "CodeSummarizer",
    "TokenCounter",
    # Prompts
    "PromptTemplate",
    "SummaryKind",
    "get_prompt_template",
]
