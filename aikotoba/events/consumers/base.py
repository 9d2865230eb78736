"""
Long-running stream workers.

A consumer names its stream and group and implements ``handle``. ``run``
blocks until a stop is requested (SIGTERM, SIGINT or ``stop()``).
"""

from __future__ import annotations

import logging
import os
import signal
import socket
import threading
from abc import ABC, abstractmethod
from typing import ClassVar

from aikotoba.events.bus import BusEvent, subscribe

logger = logging.getLogger(__name__)


class BaseConsumer(ABC):
    stream: ClassVar[str]
    group: ClassVar[str]
    batch_size: ClassVar[int] = 10
    block_ms: ClassVar[int] = 5000
    reclaim_idle_ms: ClassVar[int | None] = 60_000

    def __init__(self, name: str | None = None) -> None:
        # Names must be unique within a group or two workers share a pending list.
        self.name = (
            name
            or os.environ.get("AIKOTOBA_CONSUMER_NAME")
            or f"{self.group}-{socket.gethostname()}-{os.getpid()}"
        )
        self._stopping = threading.Event()

    @abstractmethod
    def handle(self, event: BusEvent) -> None:
        """Process one event. Raise to leave it pending for another try."""

    def stop(self) -> None:
        self._stopping.set()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def _on_signal(self, signum: int, _frame: object) -> None:
        logger.info("%s received %s, finishing current batch", self.name, signal.Signals(signum).name)
        self.stop()

    def run(self, max_iterations: int | None = None) -> int:
        """Consume until stopped; returns how many events were handled."""
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, self._on_signal)
            signal.signal(signal.SIGINT, self._on_signal)

        logger.info("Starting %s on %s/%s as %s", type(self).__name__, self.stream, self.group, self.name)
        handled = subscribe(
            self.stream,
            self.group,
            self.name,
            handler=self.handle,
            batch_size=self.batch_size,
            block_ms=self.block_ms,
            reclaim_idle_ms=self.reclaim_idle_ms,
            max_iterations=max_iterations,
            should_continue=lambda: not self.stopping,
        )
        logger.info("%s stopped after %d event(s)", self.name, handled)
        return handled
