"""
Event Bus — how the core talks to whatever renders it.

The turn pipeline never draws anything. It emits typed events (Pydantic
models) and a presentation layer (the terminal chat, a test) subscribes to
the ones it cares about with fnmatch-style patterns such as ``"tool.*"``.

Emitting is synchronous and never blocks the turn: events go onto a bounded
queue and a single worker task delivers them, in order, to every matching
handler. A handler that raises is logged and skipped.
"""

from __future__ import annotations

import asyncio
import fnmatch
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

EventHandler = Callable[["AuraEvent"], Union[None, Awaitable[Any]]]

# Splits "ChecklistItemCompleted" into its words; runs of capitals stay together.
_WORD_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z]|\d|\b)|[A-Z][a-z]*")

_STOP_TIMEOUT_SECONDS = 5.0
_DELIVERY_TIMEOUT_SECONDS = 10.0


def event_type_for(cls: type) -> str:
    """``ToolCreatedEvent`` -> ``"tool.created"``."""
    name = cls.__name__.removesuffix("Event")
    words = _WORD_RE.findall(name)
    return ".".join(w.lower() for w in words) if words else name.lower()


class AuraEvent(BaseModel):
    """Base class for every event. ``event_type`` defaults from the class name."""

    event_type: str = ""

    def model_post_init(self, __context: Any) -> None:
        if not self.event_type:
            self.event_type = event_type_for(type(self))


@dataclass
class _Listener:
    pattern: str
    handler: EventHandler
    regex: re.Pattern[str] = field(init=False)

    def __post_init__(self) -> None:
        self.regex = re.compile(fnmatch.translate(self.pattern))

    def wants(self, event_type: str) -> bool:
        return self.regex.match(event_type) is not None


# Queue entries: (event, delivered-signal or None). None on its own stops the worker.
_Envelope = Optional[tuple[AuraEvent, Optional[asyncio.Event]]]


class EventBus:
    """
    In-process publish/subscribe for Aura events.

    Patterns:
      "tool.*"   tool.working, tool.created
      "*"        everything
    """

    def __init__(self, max_queue_size: int = 1000) -> None:
        self._queue: asyncio.Queue[_Envelope] = asyncio.Queue(maxsize=max_queue_size)
        self._listeners: dict[str, _Listener] = {}
        self._worker: Optional[asyncio.Task[None]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._worker is not None

    async def start(self) -> None:
        if self._worker is not None:
            return
        self._worker = asyncio.create_task(self._deliver_forever(), name="aura-event-bus")
        logger.debug("event_bus.started")

    async def stop(self) -> None:
        """Deliver everything already queued, then stop the worker."""
        worker = self._worker
        if worker is None:
            return
        self._worker = None
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            logger.warning("event_bus.stop_queue_full")
            worker.cancel()
        try:
            await asyncio.wait_for(worker, timeout=_STOP_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("event_bus.stop_timeout", timeout=_STOP_TIMEOUT_SECONDS)
        except asyncio.CancelledError:
            pass
        self._release_waiters()
        logger.debug("event_bus.stopped")

    def _release_waiters(self) -> None:
        while not self._queue.empty():
            envelope = self._queue.get_nowait()
            if envelope is not None and envelope[1] is not None:
                envelope[1].set()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, pattern: str, handler: EventHandler) -> str:
        """Call ``handler`` for every event whose type matches ``pattern``."""
        subscription_id = uuid.uuid4().hex[:12]
        self._listeners[subscription_id] = _Listener(pattern, handler)
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> None:
        self._listeners.pop(subscription_id, None)

    @property
    def subscription_count(self) -> int:
        return len(self._listeners)

    # ------------------------------------------------------------------
    # Emitting
    # ------------------------------------------------------------------

    def emit(self, event: AuraEvent) -> None:
        """Queue an event for delivery. A full queue drops it."""
        self._enqueue(event, None)

    async def emit_async(self, event: AuraEvent) -> None:
        """Queue an event and wait until its handlers have run."""
        if self._worker is None:
            raise RuntimeError("emit_async called on a stopped EventBus")
        delivered = asyncio.Event()
        if self._enqueue(event, delivered):
            await asyncio.wait_for(delivered.wait(), timeout=_DELIVERY_TIMEOUT_SECONDS)

    def _enqueue(self, event: AuraEvent, delivered: Optional[asyncio.Event]) -> bool:
        try:
            self._queue.put_nowait((event, delivered))
        except asyncio.QueueFull:
            logger.warning("event_bus.queue_full", event_type=event.event_type)
            return False
        return True

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver_forever(self) -> None:
        while True:
            envelope = await self._queue.get()
            if envelope is None:
                return
            event, delivered = envelope
            await self._deliver(event)
            if delivered is not None:
                delivered.set()

    async def _deliver(self, event: AuraEvent) -> None:
        listeners = [sub for sub in self._listeners.values() if sub.wants(event.event_type)]
        for listener in listeners:
            try:
                result = listener.handler(event)
                if asyncio.iscoroutine(result) or asyncio.isfuture(result):
                    await result
            except Exception:
                logger.error(
                    "event_bus.handler_failed",
                    pattern=listener.pattern,
                    event_type=event.event_type,
                    exc_info=True,
                )


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class MessageAppendedEvent(AuraEvent):
    """A message was appended to a conversation's history."""

    conversation_id: str
    role: str
    is_tool: bool = False


class ToolWorkingEvent(AuraEvent):
    """A tool of ``kind`` is being synthesized (the "working" indicator)."""

    conversation_id: str
    kind: str


class ToolCreatedEvent(AuraEvent):
    """A tool instance was created and stored."""

    conversation_id: str
    kind: str
    tool_id: str
    title: str


class ChecklistItemCompletedEvent(AuraEvent):
    conversation_id: str
    tool_id: str
    text: str
    checklist_removed: bool = False


class MemoryExtractedEvent(AuraEvent):
    """A background extraction finished and indexed ``count`` facts."""

    conversation_id: str
    count: int
