"""Connection registry — the set of open SSE subscribers.

Learn: The registry is process-wide shared state. Connection handlers add
and remove themselves while publish() iterates over it. The lock guards
the mapping itself, so membership calls and snapshots are safe from any
thread. Pushing is not: a QueueSubscriber wraps an asyncio.Queue, so
publish() must run on the event loop that serves the streams.

publish() iterates over a snapshot. A subscriber added or removed while a
fan-out is in progress may or may not see that event.
"""

import asyncio
import threading
import uuid
from typing import Any, Callable, Iterator, Optional, Protocol

from storefront.realtime.errors import RegistryClosedError, SubscriberClosedError

# Returned by QueueSubscriber.next_event() when the wait times out
TIMEOUT = object()


class Subscriber(Protocol):
    """Anything the broadcaster can push to."""

    id: str

    def push(self, event: dict[str, Any]) -> None: ...

    def terminate(self) -> None: ...


class QueueSubscriber:
    """Subscriber backed by a bounded asyncio.Queue.

    push() never blocks: a full queue raises asyncio.QueueFull so one slow
    client cannot stall the fan-out loop. The stream reading this queue
    gets events in push order.

    Learn: next_event() keeps a single queue.get() task alive across calls.
    A timed-out or cancelled wait leaves that task running, and whatever
    it takes off the queue is returned by the next call. Cancelling the
    get instead could drop an event it had already dequeued.
    """

    def __init__(self, maxsize: int = 100, subscriber_id: Optional[str] = None):
        self.id = subscriber_id or str(uuid.uuid4())
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = asyncio.Event()
        self._get_task: Optional[asyncio.Future] = None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def push(self, event: dict[str, Any]) -> None:
        if self.closed:
            raise SubscriberClosedError(f"Subscriber {self.id} is closed")
        self._queue.put_nowait(event)

    def terminate(self) -> None:
        self._closed.set()
        if self._get_task is not None and not self._get_task.done():
            self._get_task.cancel()

    async def next_event(self, timeout: Optional[float] = None) -> Any:
        """Wait for the next event.

        Returns the event, None once terminated, or TIMEOUT when nothing
        arrived within `timeout` seconds.
        """
        if self.closed:
            return None
        if self._get_task is None:
            self._get_task = asyncio.ensure_future(self._queue.get())
        get_task = self._get_task
        closed_task = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait(
                {get_task, closed_task},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            closed_task.cancel()
        if get_task.done():
            self._get_task = None
            return None if get_task.cancelled() else get_task.result()
        if self.closed:
            return None
        return TIMEOUT

    def pending(self) -> int:
        return self._queue.qsize()


class ConnectionRegistry:
    """Open subscribers keyed by id."""

    def __init__(self):
        self._subscribers: dict[str, Subscriber] = {}
        self._lock = threading.Lock()
        self._closed = False

    def register(self, subscriber: Subscriber) -> None:
        with self._lock:
            if self._closed:
                raise RegistryClosedError("Shutting down; not accepting subscribers")
            self._subscribers[subscriber.id] = subscriber

    def unregister(self, subscriber_id: str) -> None:
        """Remove a subscriber. Unknown ids are ignored."""
        with self._lock:
            self._subscribers.pop(subscriber_id, None)

    def snapshot(self) -> list[Subscriber]:
        with self._lock:
            return list(self._subscribers.values())

    def for_each(self, fn: Callable[[Subscriber], Any]) -> list[Any]:
        """Apply fn to every subscriber registered at call time."""
        return [fn(subscriber) for subscriber in self.snapshot()]

    def close(self) -> None:
        """Stop accepting subscribers and terminate the open ones."""
        with self._lock:
            self._closed = True
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for subscriber in subscribers:
            subscriber.terminate()

    @property
    def closed(self) -> bool:
        return self._closed

    def ids(self) -> set[str]:
        with self._lock:
            return set(self._subscribers)

    def __contains__(self, subscriber_id: object) -> bool:
        with self._lock:
            return subscriber_id in self._subscribers

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def __iter__(self) -> Iterator[Subscriber]:
        return iter(self.snapshot())
