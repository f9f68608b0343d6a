"""Tests for the LLM module.

Tests for the Claude client, prompt templates, token counting and the
code summarizer.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from core.ingestion.models import Document
from core.llm import (
    ClaudeClient,
    CodeSummarizer,
    LLMClientError,
    LLMConfig,
    LLMResponse,
    MockClaudeClient,
    RateLimitError,
    SummaryKind,
    TokenCounter,
    get_prompt_template,
)
from core.llm.summarizer import TRUNCATION_MARKER


def _message(text: str) -> dict:
    return {
        "model": "claude-test",
        "content": [{"type": "text", "text": text}],
        "usage": {"input_tokens": 12, "output_tokens": 3},
        "stop_reason": "end_turn",
    }


# =============================================================================
# Prompt Tests
# =============================================================================


class TestPromptTemplates:
    """Tests for summarization prompt templates."""

    def test_every_kind_has_a_template(self):
        for kind in SummaryKind:
            assert get_prompt_template(kind).kind == kind

    def test_file_template_formats_path_and_code(self):
        template = get_prompt_template(SummaryKind.FILE)
        message = template.format_user_message(path="src/app.py", code="print(1)")
        assert "src/app.py" in message
        assert "print(1)" in message

    def test_commit_template_formats_diff(self):
        template = get_prompt_template(SummaryKind.COMMIT)
        message = template.format_user_message(diff="--- a.py\n+x = 1")
        assert "+x = 1" in message


class TestTokenCounter:
    """Tests for TokenCounter."""

    def test_count_tokens(self):
        counter = TokenCounter()
        assert counter.count("def hello_world(): return 42") > 0

    def test_short_text_untouched(self):
        counter = TokenCounter()
        assert counter.truncate("short text", 100) == "short text"

    def test_long_text_truncated(self):
        counter = TokenCounter()
        text = "word " * 5000
        truncated = counter.truncate(text, 50)
        assert truncated.endswith(TRUNCATION_MARKER)
        assert len(truncated) < len(text)


# =============================================================================
# Client Tests
# =============================================================================


class TestMockClaudeClient:
    """Tests for MockClaudeClient."""

    @pytest.mark.asyncio
    async def test_responses_cycle(self):
        """Test multiple calls cycle through responses."""
        client = MockClaudeClient(responses=["First", "Second"])
        r1 = await client.complete("system", "user")
        r2 = await client.complete("system", "user")
        r3 = await client.complete("system", "user")
        assert [r1.content, r2.content, r3.content] == ["First", "Second", "First"]

    @pytest.mark.asyncio
    async def test_tracks_and_resets_calls(self):
        client = MockClaudeClient()
        await client.complete("System message", "User message", max_tokens=10)
        assert client.calls[0]["user"] == "User message"
        assert client.calls[0]["max_tokens"] == 10
        client.reset()
        assert client.calls == []


class TestClaudeClient:
    """Tests for ClaudeClient against a mocked transport."""

    def test_build_payload(self):
        """Test building API payload."""
        client = ClaudeClient("test-api-key", LLMConfig(model="claude-test"))
        payload = client._build_payload(system="System", user="User", max_tokens=64)
        assert payload["model"] == "claude-test"
        assert payload["max_tokens"] == 64
        assert payload["system"] == "System"
        assert payload["messages"] == [{"role": "user", "content": "User"}]

    @pytest.mark.asyncio
    async def test_complete_parses_text_blocks(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_message("A summary."))

        client = ClaudeClient("key", transport=httpx.MockTransport(handler))
        response = await client.complete("system", "user")
        await client.close()

        assert isinstance(response, LLMResponse)
        assert response.content == "A summary."
        assert response.input_tokens == 12
        assert seen[0].headers["x-api-key"] == "key"

    @pytest.mark.asyncio
    async def test_retries_overload_then_succeeds(self):
        statuses = iter([529, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(statuses)
            if status != 200:
                return httpx.Response(status, json={"error": "overloaded"})
            return httpx.Response(200, json=_message("ok"))

        client = ClaudeClient("key", transport=httpx.MockTransport(handler))
        with patch("core.llm.client.asyncio.sleep", new_callable=AsyncMock) as sleep:
            response = await client.complete("system", "user")

        assert response.content == "ok"
        sleep.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self):
        client = ClaudeClient(
            "key",
            LLMConfig(max_retries=2),
            transport=httpx.MockTransport(lambda request: httpx.Response(429)),
        )
        with patch("core.llm.client.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(RateLimitError):
                await client.complete("system", "user")

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(400, text="bad request")

        client = ClaudeClient("key", transport=httpx.MockTransport(handler))
        with pytest.raises(LLMClientError, match="400"):
            await client.complete("system", "user")
        assert calls == 1


# =============================================================================
# Summarizer Tests
# =============================================================================


class FailingClient(MockClaudeClient):
    async def complete(self, system: str, user: str, **kwargs) -> LLMResponse:
        raise LLMClientError("Claude API timeout")


class TestCodeSummarizer:
    """Tests for CodeSummarizer."""

    @pytest.mark.asyncio
    async def test_summarize_file(self):
        client = MockClaudeClient(responses=["  Entry point of the CLI.  "])
        summarizer = CodeSummarizer(client)

        summary = await summarizer.summarize_file(Document(path="cli.py", content="main()"))

        assert summary == "Entry point of the CLI."
        assert "cli.py" in client.calls[0]["user"]
        assert client.calls[0]["max_tokens"] == get_prompt_template(
            SummaryKind.FILE
        ).max_output_tokens

    @pytest.mark.asyncio
    async def test_empty_file_not_sent(self):
        client = MockClaudeClient()
        summarizer = CodeSummarizer(client)

        assert await summarizer.summarize_file(Document(path="empty.py", content="  \n")) == ""
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_file_errors_propagate(self):
        summarizer = CodeSummarizer(FailingClient())
        with pytest.raises(LLMClientError):
            await summarizer.summarize_file(Document(path="a.py", content="x = 1"))

    @pytest.mark.asyncio
    async def test_summarize_commit(self):
        client = MockClaudeClient(responses=["* Raised the timeout [api/client.py]"])
        summarizer = CodeSummarizer(client)

        summary = await summarizer.summarize_commit("--- api/client.py\n+timeout = 30")

        assert summary.startswith("* Raised")
        assert "+timeout = 30" in client.calls[0]["user"]

    @pytest.mark.asyncio
    async def test_commit_failure_reported_as_text(self):
        summarizer = CodeSummarizer(FailingClient())

        summary = await summarizer.summarize_commit("--- a.py\n+x")

        assert summary == "Failed to generate commit summary: Claude API timeout"
