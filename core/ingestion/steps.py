"""Durable step substrate interface and an in-process implementation.

Pipeline functions never sleep, retry or fan out on their own. They receive
a StepRunner and express their work as named steps:

    files = await steps.run("load-github-repo", load)
    await steps.sleep("batch-delay-0", 2.0)
    await steps.send(CommitProcessRequested(...))

A step that already completed for the current delivery returns its memoized
result instead of running again, which is what lets a retried function
resume where the previous attempt failed.

LocalEventBus is the in-process substrate used by the API and the tests.
A hosted durable-execution service can replace it by implementing
StepRunner on top of its own SDK.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel

from .events import PipelineEvent, parse_event

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[None]]
Handler = Callable[[Any, "StepRunner"], Awaitable[Any]]


class StepRunner(ABC):
    """Per-delivery handle to the durable step substrate."""

    @property
    @abstractmethod
    def attempt(self) -> int:
        """Zero-based attempt number of the current delivery."""

    @property
    @abstractmethod
    def max_attempts(self) -> int:
        """Total attempts the substrate will make."""

    @property
    def is_final_attempt(self) -> bool:
        """Whether a failure now exhausts the retry budget."""
        return self.attempt >= self.max_attempts - 1

    @abstractmethod
    async def run(self, step_id: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` once per delivery, memoizing its result under ``step_id``."""

    @abstractmethod
    async def sleep(self, step_id: str, seconds: float) -> None:
        """Suspend for ``seconds``. A completed sleep is not repeated on retry."""

    @abstractmethod
    async def send(self, event: BaseModel) -> None:
        """Emit an event without waiting for its handlers."""


@dataclass(frozen=True)
class ConcurrencyLimit:
    """Maximum concurrent executions of a function.

    Attributes:
        limit: Executions allowed at once per key.
        key: Event field whose value partitions the limit, or None for global.
    """

    limit: int
    key: str | None = None

    def key_for(self, event: Any) -> str:
        if self.key is None:
            return "*"
        return f"{self.key}:{getattr(event, self.key)}"


@dataclass(frozen=True)
class FunctionSpec:
    """Declaration of a pipeline function bound to a trigger event.

    Attributes:
        id: Function identifier.
        event: Trigger event name.
        handler: Coroutine ``handler(event, steps)``.
        retries: Retries after the first attempt.
        concurrency: Optional concurrency limit.
    """

    id: str
    event: str
    handler: Handler
    retries: int = 0
    concurrency: ConcurrencyLimit | None = None

    @property
    def max_attempts(self) -> int:
        return self.retries + 1


@dataclass
class Delivery:
    """Record of one event delivered to one function."""

    function_id: str
    event: Any
    attempts: int = 0
    result: Any = None
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.attempts > 0


class _Slot:
    """A concurrency slot held by one delivery while it executes.

    The slot is given back while the delivery sleeps, so sleeping
    deliveries never count against the function's limit.
    """

    def __init__(self, semaphore: asyncio.Semaphore | None) -> None:
        self._semaphore = semaphore
        self._held = False

    async def acquire(self) -> None:
        if self._semaphore is not None and not self._held:
            await self._semaphore.acquire()
            self._held = True

    def release(self) -> None:
        if self._semaphore is not None and self._held:
            self._held = False
            self._semaphore.release()

    async def sleep(self, sleeper: Sleeper, seconds: float) -> None:
        self.release()
        try:
            await sleeper(seconds)
        finally:
            await self.acquire()


class LocalStepRunner(StepRunner):
    """StepRunner backed by an in-memory memo shared across attempts."""

    def __init__(
        self,
        bus: "LocalEventBus",
        memo: dict[str, Any],
        attempt: int = 0,
        max_attempts: int = 1,
        sleeper: Sleeper = asyncio.sleep,
        slot: _Slot | None = None,
    ) -> None:
        self._bus = bus
        self._memo = memo
        self._attempt = attempt
        self._max_attempts = max_attempts
        self._sleeper = sleeper
        self._slot = slot or _Slot(None)

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def run(self, step_id: str, fn: Callable[[], Awaitable[T]]) -> T:
        if step_id in self._memo:
            return self._memo[step_id]
        result = await fn()
        self._memo[step_id] = result
        return result

    async def sleep(self, step_id: str, seconds: float) -> None:
        if step_id in self._memo:
            return
        if seconds > 0:
            await self._slot.sleep(self._sleeper, seconds)
        self._memo[step_id] = None

    async def send(self, event: BaseModel) -> None:
        await self._bus.send(event)


@dataclass
class _Registration:
    spec: FunctionSpec
    semaphores: dict[str, asyncio.Semaphore] = field(default_factory=dict)

    def semaphore_for(self, event: Any) -> asyncio.Semaphore | None:
        if self.spec.concurrency is None:
            return None
        key = self.spec.concurrency.key_for(event)
        if key not in self.semaphores:
            self.semaphores[key] = asyncio.Semaphore(self.spec.concurrency.limit)
        return self.semaphores[key]


class LocalEventBus:
    """In-process event substrate with retries and keyed concurrency.

    Sent events are delivered to every function registered for their name
    in a background task. Deliveries over a function's concurrency limit
    wait for a slot; a delivery gives its slot back while it sleeps, so the
    limit bounds executing work only. Failed attempts are retried with exponential backoff
    until the function's retry budget is spent.
    """

    def __init__(
        self,
        sleeper: Sleeper = asyncio.sleep,
        backoff_base: float = 1.0,
        max_backoff: float = 30.0,
    ) -> None:
        """Initialize the bus.

        Args:
            sleeper: Coroutine used for step sleeps and retry backoff.
            backoff_base: First retry delay in seconds.
            max_backoff: Upper bound on retry delays.
        """
        self._sleeper = sleeper
        self._backoff_base = backoff_base
        self._max_backoff = max_backoff
        self._functions: dict[str, list[_Registration]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self.sent: list[BaseModel] = []
        self.deliveries: list[Delivery] = []
        self._logger = logger.bind(component="event_bus")

    def register(self, spec: FunctionSpec) -> None:
        """Subscribe a function to its trigger event."""
        self._functions.setdefault(spec.event, []).append(_Registration(spec))
        self._logger.debug("function_registered", function_id=spec.id, trigger=spec.event)

    @property
    def functions(self) -> list[FunctionSpec]:
        return [r.spec for regs in self._functions.values() for r in regs]

    async def send(self, event: BaseModel) -> None:
        """Record an event and start a background delivery per subscriber."""
        name = getattr(event, "name", None)
        self.sent.append(event)
        registrations = self._functions.get(name, [])
        if not registrations:
            self._logger.warning("event_without_subscribers", event_name=name)
            return

        for registration in registrations:
            task = asyncio.create_task(self._deliver(registration, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def dispatch(self, name: str, data: dict[str, Any]) -> PipelineEvent:
        """Validate a raw payload and send it.

        Raises:
            EventValidationError: If the payload is invalid.
        """
        event = parse_event(name, data)
        await self.send(event)
        return event

    async def invoke(self, function_id: str, event: Any) -> Any:
        """Deliver ``event`` to one function and wait for the result.

        Raises:
            KeyError: If no function has ``function_id``.
            Exception: The final attempt's error.
        """
        for registrations in self._functions.values():
            for registration in registrations:
                if registration.spec.id == function_id:
                    delivery = await self._deliver(registration, event)
                    if delivery.error is not None:
                        raise delivery.error
                    return delivery.result
        raise KeyError(function_id)

    async def drain(self) -> None:
        """Wait until every outstanding delivery, including ones they spawn, finishes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def deliveries_for(self, function_id: str) -> list[Delivery]:
        return [d for d in self.deliveries if d.function_id == function_id]

    async def _deliver(self, registration: _Registration, event: Any) -> Delivery:
        spec = registration.spec
        delivery = Delivery(function_id=spec.id, event=event)
        self.deliveries.append(delivery)
        slot = _Slot(registration.semaphore_for(event))

        await slot.acquire()
        try:
            await self._attempt_all(spec, event, delivery, slot)
        finally:
            slot.release()
        return delivery

    async def _attempt_all(
        self, spec: FunctionSpec, event: Any, delivery: Delivery, slot: _Slot
    ) -> None:
        memo: dict[str, Any] = {}
        for attempt in range(spec.max_attempts):
            delivery.attempts = attempt + 1
            steps = LocalStepRunner(
                self,
                memo,
                attempt=attempt,
                max_attempts=spec.max_attempts,
                sleeper=self._sleeper,
                slot=slot,
            )
            try:
                delivery.result = await spec.handler(event, steps)
                delivery.error = None
                return
            except Exception as e:
                delivery.error = e
                final = attempt == spec.max_attempts - 1
                self._logger.warning(
                    "function_attempt_failed",
                    function_id=spec.id,
                    attempt=attempt,
                    final=final,
                    error=str(e),
                )
                if final:
                    self._logger.error("function_failed", function_id=spec.id, error=str(e))
                    return
                delay = min(self._backoff_base * 2**attempt, self._max_backoff)
                await slot.sleep(self._sleeper, delay)
