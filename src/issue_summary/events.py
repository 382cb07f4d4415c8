"""
Streaming events and the channel that carries them.

The orchestrator produces PipelineEvents into an EventChannel; the
transport consumes them and serializes each as a server-sent event. Once
the consumer goes away it closes the channel, and later sends are dropped
instead of raising.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)

TERMINAL_EVENTS = ("complete", "error")


@dataclass(frozen=True)
class PipelineEvent:
    """A named event with a JSON-serializable payload."""
    name: str
    data: dict
    # the PipelineResult behind a 'complete' event, for persistence; never serialized
    result: Optional[Any] = field(default=None, compare=False, repr=False)

    @property
    def terminal(self) -> bool:
        return self.name in TERMINAL_EVENTS

    def to_sse(self) -> str:
        return format_sse(self.name, self.data)


def format_sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


class EventChannel:
    """
    Single-consumer queue of PipelineEvents.

    Sends happen on the event loop thread and are enqueued without
    suspending, so concurrent producers cannot interleave a write.
    """

    _END = object()

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, name: str, data: dict, result: Any = None) -> bool:
        """Enqueue an event. Returns False (and drops it) once the channel is closed."""
        if self._closed:
            logger.debug(f"Dropping '{name}' event, channel closed")
            return False
        self._queue.put_nowait(PipelineEvent(name, data, result))
        return True

    def close(self) -> None:
        """Stop accepting events; the consumer sees end-of-stream after draining."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._END)

    def __aiter__(self):
        return self

    async def __anext__(self) -> PipelineEvent:
        item = await self._queue.get()
        if item is self._END:
            raise StopAsyncIteration
        return item
