"""Prompt templates for file and commit summarization.

This module defines the prompts used to turn source files and commit
diffs into the short summaries that are embedded and shown to users.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SummaryKind(str, Enum):
    """Kinds of summary the pipeline requests."""

    FILE = "file"  # One source file
    COMMIT = "commit"  # One commit diff


class PromptTemplate(BaseModel):
    """A prompt template for summarization requests.

    Attributes:
        kind: Kind of summary this template produces.
        system_prompt: System message for the LLM.
        user_template: Template for the user message with placeholders.
        max_input_tokens: Budget for the variable part of the user message.
        max_output_tokens: Output budget for the summary.
    """

    model_config = ConfigDict(frozen=True)

    kind: SummaryKind = Field(..., description="Summary kind")
    system_prompt: str = Field(..., description="System prompt")
    user_template: str = Field(..., description="User message template")
    max_input_tokens: int = Field(default=8000, description="Max input tokens")
    max_output_tokens: int = Field(default=512, description="Max output tokens")

    def format_user_message(self, **kwargs: Any) -> str:
        """Fill the user template.

        Returns:
            Formatted user message.
        """
        return self.user_template.format(**kwargs)


# =============================================================================
# System Prompts
# =============================================================================

SYSTEM_PROMPT_FILE = """You are a senior software engineer onboarding a junior engineer
onto a codebase.
Explain the purpose of a single source file so it can be found later by semantic search.

- Describe what the file is responsible for and how it fits into the project
- Name the main functions, classes, or exports it defines
- Keep it under 100 words of plain prose, with no code blocks
- If the file is empty, generated, or carries no meaningful logic, reply with nothing"""

SYSTEM_PROMPT_COMMIT = """You are an expert programmer summarizing a git diff.

Diff format reminders:
- Each changed file starts with a line like `--- path/to/file`
- Lines starting with `+` were added, lines starting with `-` were removed
- Other lines are context

Write a short bullet list of the meaningful changes. Mention file names in
brackets when it helps, e.g. `* Raised the request timeout [api/client.py]`.
Do not repeat the diff and do not speculate about intent beyond what it shows."""


# =============================================================================
# User Templates
# =============================================================================

USER_TEMPLATE_FILE = """## File
{path}

## Source
```
{code}
```

Summarize this file."""

USER_TEMPLATE_COMMIT = """## Diff
{diff}

Summarize this commit."""


# =============================================================================
# Templates
# =============================================================================

FILE_SUMMARY_TEMPLATE = PromptTemplate(
    kind=SummaryKind.FILE,
    system_prompt=SYSTEM_PROMPT_FILE,
    user_template=USER_TEMPLATE_FILE,
    max_input_tokens=6000,
    max_output_tokens=300,
)

COMMIT_SUMMARY_TEMPLATE = PromptTemplate(
    kind=SummaryKind.COMMIT,
    system_prompt=SYSTEM_PROMPT_COMMIT,
    user_template=USER_TEMPLATE_COMMIT,
    max_input_tokens=10000,
    max_output_tokens=512,
)

_TEMPLATES = {
    SummaryKind.FILE: FILE_SUMMARY_TEMPLATE,
    SummaryKind.COMMIT: COMMIT_SUMMARY_TEMPLATE,
}


def get_prompt_template(kind: SummaryKind) -> PromptTemplate:
    """Get the prompt template for a summary kind.

    Args:
        kind: Summary kind.

    Returns:
        The matching template.
    """
    return _TEMPLATES[kind]
