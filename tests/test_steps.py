"""Tests for the step substrate and the in-process event bus."""

import asyncio

import pytest

from core.ingestion import (
    ConcurrencyLimit,
    EventValidationError,
    FilesReindexRequested,
    FunctionSpec,
    LocalEventBus,
    StepRunner,
)
from core.ingestion.events import FILES_REINDEX_REQUESTED
from tests.conftest import REPO_URL, RecordingSleeper


def _event(project_id: str = "p1") -> FilesReindexRequested:
    return FilesReindexRequested(project_id=project_id, repo_url=REPO_URL, files=["a.py"])


class TestStepMemoization:
    """Tests for LocalStepRunner step semantics across retries."""

    @pytest.mark.asyncio
    async def test_completed_steps_do_not_rerun(self, bus: LocalEventBus):
        calls: list[str] = []

        async def handler(event, steps: StepRunner):
            async def first():
                calls.append("first")
                return 1

            async def second():
                calls.append("second")
                if steps.attempt == 0:
                    raise RuntimeError("transient")
                return 2

            a = await steps.run("first", first)
            b = await steps.run("second", second)
            return a + b

        bus.register(FunctionSpec("fn", FILES_REINDEX_REQUESTED, handler, retries=1))

        result = await bus.invoke("fn", _event())

        assert result == 3
        assert calls == ["first", "second", "second"]
        assert bus.deliveries_for("fn")[0].attempts == 2

    @pytest.mark.asyncio
    async def test_completed_sleep_not_repeated(
        self, bus: LocalEventBus, sleeper: RecordingSleeper
    ):
        async def handler(event, steps: StepRunner):
            await steps.sleep("pause", 5.0)
            if steps.attempt == 0:
                raise RuntimeError("boom")
            return "ok"

        bus.register(FunctionSpec("fn", FILES_REINDEX_REQUESTED, handler, retries=1))

        assert await bus.invoke("fn", _event()) == "ok"
        # one step sleep plus one retry backoff
        assert sleeper.calls == [5.0, 1.0]

    @pytest.mark.asyncio
    async def test_final_attempt_flag(self, bus: LocalEventBus):
        seen: list[tuple[int, bool]] = []

        async def handler(event, steps: StepRunner):
            seen.append((steps.attempt, steps.is_final_attempt))
            raise RuntimeError("always")

        bus.register(FunctionSpec("fn", FILES_REINDEX_REQUESTED, handler, retries=2))

        with pytest.raises(RuntimeError, match="always"):
            await bus.invoke("fn", _event())
        assert seen == [(0, False), (1, False), (2, True)]

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, sleeper: RecordingSleeper):
        bus = LocalEventBus(sleeper=sleeper, backoff_base=4.0, max_backoff=10.0)

        async def handler(event, steps: StepRunner):
            raise RuntimeError("down")

        bus.register(FunctionSpec("fn", FILES_REINDEX_REQUESTED, handler, retries=3))

        with pytest.raises(RuntimeError):
            await bus.invoke("fn", _event())
        assert sleeper.calls == [4.0, 8.0, 10.0]


class TestEventBus:
    """Tests for delivery, fan-out and concurrency."""

    @pytest.mark.asyncio
    async def test_send_delivers_in_background(self, bus: LocalEventBus):
        received: list[str] = []

        async def handler(event, steps: StepRunner):
            received.append(event.project_id)

        bus.register(FunctionSpec("fn", FILES_REINDEX_REQUESTED, handler))

        await bus.send(_event("a"))
        await bus.send(_event("b"))
        await bus.drain()

        assert sorted(received) == ["a", "b"]
        assert all(d.succeeded for d in bus.deliveries_for("fn"))

    @pytest.mark.asyncio
    async def test_event_without_subscribers_is_recorded(self, bus: LocalEventBus):
        await bus.send(_event())
        await bus.drain()
        assert len(bus.sent) == 1
        assert bus.deliveries == []

    @pytest.mark.asyncio
    async def test_drain_waits_for_spawned_events(self, bus: LocalEventBus):
        async def parent(event, steps: StepRunner):
            if event.reason == "manual":
                await steps.send(
                    FilesReindexRequested(
                        project_id=event.project_id, repo_url=REPO_URL, reason="child"
                    )
                )

        bus.register(FunctionSpec("fn", FILES_REINDEX_REQUESTED, parent))

        await bus.send(_event())
        await bus.drain()

        assert [e.reason for e in bus.sent] == ["manual", "child"]
        assert len(bus.deliveries_for("fn")) == 2

    @pytest.mark.asyncio
    async def test_keyed_concurrency_limit(self, bus: LocalEventBus):
        running: dict[str, int] = {}
        peak: dict[str, int] = {}

        async def handler(event, steps: StepRunner):
            key = event.project_id
            running[key] = running.get(key, 0) + 1
            peak[key] = max(peak.get(key, 0), running[key])
            await asyncio.sleep(0)
            running[key] -= 1

        bus.register(
            FunctionSpec(
                "fn",
                FILES_REINDEX_REQUESTED,
                handler,
                concurrency=ConcurrencyLimit(limit=1, key="project_id"),
            )
        )

        for project_id in ("a", "a", "a", "b", "b"):
            await bus.send(_event(project_id))
        await bus.drain()

        assert peak == {"a": 1, "b": 1}

    @pytest.mark.asyncio
    async def test_dispatch_validates_payload(self, bus: LocalEventBus):
        event = await bus.dispatch(
            FILES_REINDEX_REQUESTED, {"projectId": "p1", "repoUrl": REPO_URL, "files": ["x"]}
        )
        assert isinstance(event, FilesReindexRequested)

        with pytest.raises(EventValidationError):
            await bus.dispatch(FILES_REINDEX_REQUESTED, {"projectId": "p1"})

    @pytest.mark.asyncio
    async def test_invoke_unknown_function(self, bus: LocalEventBus):
        with pytest.raises(KeyError):
            await bus.invoke("missing", _event())

    def test_functions_lists_registrations(self, bus: LocalEventBus):
        async def handler(event, steps):
            return None

        bus.register(FunctionSpec("one", FILES_REINDEX_REQUESTED, handler))
        bus.register(FunctionSpec("two", "other.event", handler))

        assert sorted(spec.id for spec in bus.functions) == ["one", "two"]
