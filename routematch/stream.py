"""Single-producer, multi-consumer FIFO publisher."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Generic, List, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class Stream(Generic[T]):
    """Push values to callback and queue subscribers in publish order.

    Callbacks run on the publishing thread; consumers on other threads should
    use :meth:`subscribe_queue`. A failing callback is logged and skipped so a
    broken consumer can never interrupt the producer.
    """

    def __init__(self, name: str = "stream") -> None:
        self._name = name
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[T], None]] = []
        self._queues: List["queue.Queue[T]"] = []

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""

        with self._lock:
            self._callbacks.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return _unsubscribe

    def subscribe_queue(self, maxsize: int = 0) -> "queue.Queue[T]":
        """Return a queue that receives every value published from now on."""

        channel: "queue.Queue[T]" = queue.Queue(maxsize=maxsize)
        with self._lock:
            self._queues.append(channel)
        return channel

    def unsubscribe_queue(self, channel: "queue.Queue[T]") -> None:
        with self._lock:
            if channel in self._queues:
                self._queues.remove(channel)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._callbacks) + len(self._queues)

    def publish(self, value: T) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
            queues = list(self._queues)
        for callback in callbacks:
            try:
                callback(value)
            except Exception:
                LOGGER.exception("Subscriber of %s failed", self._name)
        for channel in queues:
            try:
                channel.put_nowait(value)
            except queue.Full:
                LOGGER.warning("Dropping %s value for a full subscriber queue", self._name)


__all__ = ["Stream"]
