"""Line sinks for sighting output."""
from __future__ import annotations

import logging
import sys
import threading
from collections import deque
from pathlib import Path
from typing import Deque, List, Optional, Protocol, TextIO, Union

logger = logging.getLogger(__name__)


class LineSink(Protocol):
    def write(self, line: str) -> None: ...


class ConsoleSink:
    """Writes each line to a text stream (stdout by default)."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream

    def write(self, line: str) -> None:
        stream = self.stream or sys.stdout
        stream.write(line + "\n")
        stream.flush()


class FileSink:
    """Appends lines to a text file.

    Lines are written and flushed one at a time so the file stays
    tail-friendly while a session is running.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def write(self, line: str) -> None:
        with self._lock:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
                handle.flush()


class MemorySink:
    """Keeps lines in memory; used by tests and the HTTP API.

    With ``maxlen`` only the most recent ``maxlen`` lines are kept.
    """

    def __init__(self, maxlen: Optional[int] = None) -> None:
        if maxlen is not None and maxlen <= 0:
            raise ValueError("maxlen must be positive")
        self.maxlen = maxlen
        self.lines: Union[List[str], Deque[str]] = deque(maxlen=maxlen) if maxlen else []
        self._lock = threading.Lock()

    def write(self, line: str) -> None:
        with self._lock:
            self.lines.append(line)

    def tail(self, limit: int) -> List[str]:
        with self._lock:
            lines = list(self.lines)
        return lines[-limit:] if limit > 0 else []

    def clear(self) -> None:
        with self._lock:
            self.lines.clear()


class LoggingSink:
    """Forwards lines to a :mod:`logging` logger at INFO."""

    def __init__(self, name: str = "nearbylog.sightings", level: int = logging.INFO) -> None:
        self.logger = logging.getLogger(name)
        self.level = level

    def write(self, line: str) -> None:
        self.logger.log(self.level, "%s", line)


class TeeSink:
    """Writes every line to several sinks in order."""

    def __init__(self, *sinks: LineSink) -> None:
        self.sinks = sinks

    def write(self, line: str) -> None:
        for sink in self.sinks:
            sink.write(line)


class BufferedSink:
    """Bounded, non-blocking front for a slower sink.

    ``write`` only enqueues; a daemon thread drains the queue into ``inner``.
    When the queue is full the oldest pending line is discarded and
    ``dropped_count`` is incremented. Failures of the inner sink are counted in
    ``failure_count`` and logged; the worker keeps going.
    """

    def __init__(self, inner: LineSink, *, capacity: int = 1024, name: str = "nearbylog-sink") -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.inner = inner
        self.capacity = capacity
        self.dropped_count = 0
        self.failure_count = 0
        self._queue: Deque[str] = deque()
        self._cond = threading.Condition()
        self._closed = False
        self._busy = False
        self._worker = threading.Thread(target=self._drain, name=name, daemon=True)
        self._worker.start()

    def write(self, line: str) -> None:
        with self._cond:
            if self._closed:
                raise RuntimeError("buffered sink is closed")
            if len(self._queue) >= self.capacity:
                self._queue.popleft()
                self.dropped_count += 1
                logger.warning(
                    "sink buffer full (capacity=%d); dropped oldest line, %d dropped so far",
                    self.capacity,
                    self.dropped_count,
                )
            self._queue.append(line)
            self._cond.notify_all()

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._queue)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued line has been handed to the inner sink."""
        with self._cond:
            return self._cond.wait_for(lambda: not self._queue and not self._busy, timeout=timeout)

    def close(self, timeout: Optional[float] = 5.0) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
        self._worker.join(timeout)

    def _drain(self) -> None:
        while True:
            with self._cond:
                self._cond.wait_for(lambda: self._queue or self._closed)
                if not self._queue:
                    return
                line = self._queue.popleft()
                self._busy = True
            try:
                self.inner.write(line)
            except Exception:
                self.failure_count += 1
                logger.exception("buffered sink failed to write line")
            finally:
                with self._cond:
                    self._busy = False
                    self._cond.notify_all()


__all__ = [
    "LineSink",
    "ConsoleSink",
    "FileSink",
    "MemorySink",
    "LoggingSink",
    "TeeSink",
    "BufferedSink",
]
