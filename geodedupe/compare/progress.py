"""Periodic progress reporting for long runs."""

from __future__ import annotations

import logging
import threading
import time
from datetime import timedelta
from typing import Callable, Optional

LOGGER = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    return str(timedelta(seconds=int(seconds)))


class ProgressMonitor:
    """
    Log ``processed N/M shards in <duration>`` every ``interval`` seconds.

    Purely observational. Use as a context manager::

        with ProgressMonitor(total=len(shards), interval=60) as monitor:
            for shard in shards:
                ...
                monitor.signal()

    When ``total`` is unknown the line reads ``processed N <unit> in ...``.
    A final line is logged when the monitor stops.
    """

    def __init__(
        self,
        total: Optional[int] = None,
        interval: float = 60.0,
        *,
        unit: str = "shards",
        report: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._total = total
        self._interval = interval
        self._unit = unit
        self._report = report or LOGGER.info
        self._clock = clock
        self._lock = threading.Lock()
        self._processed = 0
        self._started: Optional[float] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def processed(self) -> int:
        with self._lock:
            return self._processed

    def signal(self, count: int = 1) -> None:
        with self._lock:
            self._processed += count

    def status(self) -> str:
        elapsed = self._clock() - self._started if self._started is not None else 0.0
        done = self.processed if self._total is None else f"{self.processed}/{self._total}"
        return f"processed {done} {self._unit} in {format_duration(elapsed)}"

    def start(self) -> "ProgressMonitor":
        if self._thread is not None:
            return self
        self._started = self._clock()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="geodedupe-progress", daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
        self._report(self.status())

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            self._report(self.status())

    def __enter__(self) -> "ProgressMonitor":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.stop()
        return False
