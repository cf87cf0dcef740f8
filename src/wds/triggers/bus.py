from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Callable

from wds.types import Detection

Subscriber = Callable[[list[Detection]], None]


@dataclass(frozen=True)
class SubscriptionHandle:
    id: int


@dataclass
class PublishResult:
    delivered: int
    failed: int


class NotificationBus:
    """Registry of detection callbacks keyed by subscription handle.

    Delivery iterates over a snapshot of the registry, so callbacks may
    subscribe or unsubscribe (themselves included) while a batch is being
    delivered. A subscriber removed mid-delivery may still see that batch.
    """

    def __init__(self) -> None:
        self._subscribers: dict[SubscriptionHandle, Subscriber] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._logger = logging.getLogger("wds.bus")

    def subscribe(self, callback: Subscriber) -> SubscriptionHandle:
        if not callable(callback):
            raise TypeError("callback must be callable")
        with self._lock:
            handle = SubscriptionHandle(next(self._ids))
            self._subscribers[handle] = callback
        self._logger.debug("subscribe handle=%d", handle.id)
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        with self._lock:
            removed = self._subscribers.pop(handle, None) is not None
        self._logger.debug("unsubscribe handle=%d removed=%s", handle.id, removed)
        return removed

    def publish(self, detections: list[Detection]) -> PublishResult:
        with self._lock:
            snapshot = list(self._subscribers.items())

        delivered = 0
        failed = 0
        for handle, callback in snapshot:
            try:
                callback(list(detections))
                delivered += 1
            except Exception:
                failed += 1
                self._logger.exception("Subscriber callback failed handle=%d", handle.id)
        return PublishResult(delivered=delivered, failed=failed)

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
