"""
Broadcast status channels.

Latest-value semantics: each subscriber holds at most one pending value;
a slow subscriber only ever sees the newest one. Publishing never blocks
and never depends on how many subscribers are attached.

Each channel is closed exactly once; closing wakes every subscriber,
which receives its pending value (if any) and then ends its iteration.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Generic, TypeVar

from engine.status_snapshot import StatusSnapshot

T = TypeVar("T")

_CLOSED: Any = object()


class Subscription(Generic[T]):
    """One subscriber's view of a channel; async-iterable."""

    def __init__(self, channel: StatusChannel[T], initial: T) -> None:
        self._channel = channel
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=1)
        self._queue.put_nowait(initial)
        self._closed = False

    def _offer(self, value: T) -> None:
        # Drop the stale pending value; only the latest matters
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(value)

    def _close(self) -> None:
        # A pending value is still delivered before iteration ends
        self._closed = True
        if self._queue.empty():
            self._queue.put_nowait(_CLOSED)

    def unsubscribe(self) -> None:
        self._channel._detach(self)  # pylint: disable=protected-access

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        value = await self._queue.get()
        if value is _CLOSED:
            raise StopAsyncIteration
        return value


class StatusChannel(Generic[T]):

    def __init__(self, name: str, initial: T) -> None:
        self.name = name
        self._value = initial
        self._subscribers: list[Subscription[T]] = []
        self._closed = False

    @property
    def value(self) -> T:
        return self._value

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, value: T) -> bool:
        """Store and broadcast a new value; returns False if nothing changed."""
        if self._closed or value == self._value:
            return False
        self._value = value
        for sub in list(self._subscribers):
            sub._offer(value)  # pylint: disable=protected-access
        return True

    def subscribe(self) -> Subscription[T]:
        sub: Subscription[T] = Subscription(self, self._value)
        if self._closed:
            sub._close()  # pylint: disable=protected-access
        else:
            self._subscribers.append(sub)
        return sub

    def close(self) -> bool:
        """Close the channel; returns True only for the closing call."""
        if self._closed:
            return False
        self._closed = True
        for sub in self._subscribers:
            sub._close()  # pylint: disable=protected-access
        self._subscribers.clear()
        return True

    def _detach(self, sub: Subscription[T]) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)


class StatusChannels:
    """
    The published observables of the engine.

    One channel per observable plus a `snapshot` channel carrying the
    whole StatusSnapshot (used by the WebSocket status stream).
    """

    def __init__(self, initial: StatusSnapshot) -> None:
        self.snapshot: StatusChannel[StatusSnapshot] = StatusChannel("snapshot", initial)
        self.status: StatusChannel[str] = StatusChannel("status", initial.status.value)
        self.is_playing: StatusChannel[bool] = StatusChannel("is_playing", initial.is_playing)
        self.is_loading: StatusChannel[bool] = StatusChannel("is_loading", initial.is_loading)
        self.error_message: StatusChannel[str] = StatusChannel(
            "error_message", initial.error_message
        )
        self.status_message: StatusChannel[str] = StatusChannel(
            "status_message", initial.status_message
        )
        self.volume: StatusChannel[float] = StatusChannel("volume", initial.volume)

    def all(self) -> tuple[StatusChannel[Any], ...]:
        return (
            self.snapshot,
            self.status,
            self.is_playing,
            self.is_loading,
            self.error_message,
            self.status_message,
            self.volume,
        )

    def publish(self, snapshot: StatusSnapshot) -> None:
        self.status.publish(snapshot.status.value)
        self.is_playing.publish(snapshot.is_playing)
        self.is_loading.publish(snapshot.is_loading)
        self.error_message.publish(snapshot.error_message)
        self.status_message.publish(snapshot.status_message)
        self.volume.publish(snapshot.volume)
        self.snapshot.publish(snapshot)

    def close_all(self) -> int:
        """Close every channel; returns how many were closed by this call."""
        return sum(1 for channel in self.all() if channel.close())
