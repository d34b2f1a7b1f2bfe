# gitpane/core/NotificationChannel.py
"""NotificationChannel.py
========================
Single-consumer delivery path from worker threads back to the UI thread.

Workers and the filesystem watcher ``put`` outcomes and signals from any
thread. The UI thread calls ``drain`` once per tick and gets everything that
had arrived by then as one batch, so a frame is always rendered against a
complete set of known outcomes, never half of one.
"""

import logging
import queue
import threading

from gitpane.core.Errors import SchedulerFatal
from gitpane.core.Jobs import Notification


class NotificationChannel:
    """Multi-producer/single-consumer queue of ``JobOutcome`` and ``RepoChanged``."""

    def __init__(self) -> None:
        self._queue: queue.SimpleQueue[Notification] = queue.SimpleQueue()
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def put(self, item: Notification) -> None:
        """Thread-safe enqueue.

        Raises:
            SchedulerFatal: if the channel has been closed.
        """
        if self._closed.is_set():
            raise SchedulerFatal(f"notification channel is closed, dropping {item!r}")
        self._queue.put(item)

    def drain(self) -> list[Notification]:
        """Return every queued item without blocking; empty list if none."""
        batch: list[Notification] = []
        try:
            while True:
                batch.append(self._queue.get_nowait())
        except queue.Empty:
            pass
        if batch:
            logging.debug("NotificationChannel: drained %d item(s).", len(batch))
        return batch

    def close(self) -> None:
        if not self._closed.is_set():
            self._closed.set()
            logging.info("NotificationChannel closed.")
