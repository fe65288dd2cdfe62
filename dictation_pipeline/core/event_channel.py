"""
Publish/subscribe channel for model lifecycle events.
"""

import logging
import queue
import threading


class EventChannel:
    """Fan out events to any number of subscriber queues.

    Publishing never blocks; a subscriber whose queue is full misses the event.
    """

    def __init__(self, maxsize=100):
        self.logger = logging.getLogger(__name__)
        self._maxsize = maxsize
        self._subscribers = []
        self._lock = threading.Lock()

    def subscribe(self) -> queue.Queue:
        q = queue.Queue(maxsize=self._maxsize)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q):
        with self._lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    def publish(self, event):
        with self._lock:
            subscribers = list(self._subscribers)
        self.logger.debug(f"Publishing {event}")
        for q in subscribers:
            try:
                q.put_nowait(event)
            except queue.Full:
                self.logger.warning(f"Event subscriber queue full, dropping {event.kind.value}")
