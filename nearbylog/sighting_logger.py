"""Formats sightings into log lines and hands them to a sink."""
from __future__ import annotations

import logging
from typing import Optional

from nearbylog.errors import SinkWriteFailure
from nearbylog.models import DeviceRecord, isoformat_utc
from nearbylog.sinks import BufferedSink, ConsoleSink, LineSink

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "unknown"


class SightingLogger:
    """Writes one line per sighting to the configured sink.

    Sink errors never escape :meth:`record`; they are counted and reported
    through :mod:`logging` instead. Writes happen on the caller's thread, so a
    caller-supplied sink that may block should be wrapped in
    :class:`~nearbylog.sinks.BufferedSink`. Without a sink, lines go to stdout
    through a buffered sink owned by this logger and released by :meth:`close`.
    """

    def __init__(self, sink: Optional[LineSink] = None) -> None:
        self._owns_sink = sink is None
        self.sink: LineSink = sink if sink is not None else BufferedSink(ConsoleSink())
        self.lines_written = 0
        self.failure_count = 0
        self.last_failure: Optional[SinkWriteFailure] = None

    @staticmethod
    def format(event: DeviceRecord, is_new: bool) -> str:
        seen = "new" if is_new else "seen again"
        return (
            f"{event.status} device {seen}: "
            f"name={event.name or UNKNOWN_NAME} "
            f"address={event.address} "
            f"first_seen={isoformat_utc(event.first_seen_at)} "
            f"last_seen={isoformat_utc(event.last_seen_at)}"
        )

    def record(self, event: DeviceRecord, is_new: bool) -> None:
        line = self.format(event, is_new)
        try:
            self.sink.write(line)
        except Exception as exc:
            failure = SinkWriteFailure(line, exc)
            self.failure_count += 1
            self.last_failure = failure
            logger.error("%s; sighting for %s not recorded", failure, event.address)
            return
        self.lines_written += 1

    def close(self) -> None:
        """Flush and release the default sink; caller-supplied sinks are left open."""
        if self._owns_sink:
            self.sink.close()  # type: ignore[attr-defined]


__all__ = ["SightingLogger", "UNKNOWN_NAME"]
