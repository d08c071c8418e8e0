# honeywatch/bus.py
import heapq
import itertools
import logging
import threading
import time
from typing import Callable, List, Optional, Tuple

from .models import Notification

logger = logging.getLogger(__name__)

Subscriber = Callable[[Notification], None]


class EventBus:
    """
    In-process fan out of notifications to subscribers.

    Notifications with a delay wait in a heap and are delivered by one
    scheduler thread, however many are pending.
    A failing subscriber is logged and skipped, the others still run.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()
        self._wakeup = threading.Condition(self._lock)
        self._pending: List[Tuple[float, int, Notification]] = []
        self._seq = itertools.count()
        self._worker: Optional[threading.Thread] = None
        self._closed = False

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    def subscribe(self, handler: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(handler)

    def unsubscribe(self, handler: Subscriber) -> None:
        with self._lock:
            if handler in self._subscribers:
                self._subscribers.remove(handler)

    def publish(self, notification: Notification) -> None:
        if notification.delay > 0:
            self._schedule(notification)
            return
        self._deliver(notification)

    def publish_all(self, notifications) -> None:
        for n in notifications:
            self.publish(n)

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Drop pending delayed notifications and stop the scheduler."""
        with self._wakeup:
            self._closed = True
            self._pending.clear()
            self._wakeup.notify_all()
            worker, self._worker = self._worker, None
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout)

    def _schedule(self, notification: Notification) -> None:
        with self._wakeup:
            if self._closed:
                return
            due = self.clock() + notification.delay
            heapq.heappush(self._pending, (due, next(self._seq), notification))
            if self._worker is None:
                worker = threading.Thread(
                    target=self._run, name="bus-scheduler", daemon=True)
                worker.start()
                self._worker = worker
            self._wakeup.notify()

    def _run(self) -> None:
        while True:
            with self._wakeup:
                while not self._closed:
                    if not self._pending:
                        self._wakeup.wait()
                        continue
                    wait = self._pending[0][0] - self.clock()
                    if wait <= 0:
                        break
                    self._wakeup.wait(wait)
                if self._closed:
                    return
                _, _, notification = heapq.heappop(self._pending)
            self._deliver(notification)

    def _deliver(self, notification: Notification) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for handler in subscribers:
            try:
                handler(notification)
            except Exception as e:
                logger.warning("Subscriber %r failed on %s: %s",
                               handler, notification.kind, e)
