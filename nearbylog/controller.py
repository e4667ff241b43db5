"""Scan session orchestration."""
from __future__ import annotations

import enum
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from nearbylog.errors import (
    AuthorizationError,
    InvalidRecordError,
    PreconditionError,
    SessionStateError,
)
from nearbylog.models import DeviceRecord
from nearbylog.registry import DeviceRegistry
from nearbylog.sighting_logger import SightingLogger
from nearbylog.sinks import LineSink
from nearbylog.sources import BondedSnapshotSource, LiveScanSource, RadioAdapter

logger = logging.getLogger(__name__)


class Authorizer(Protocol):
    def authorized(self) -> bool: ...


class StaticAuthorizer:
    """Authorizer with a fixed answer, for platforms without a permission model."""

    def __init__(self, granted: bool = True) -> None:
        self.granted = granted

    def authorized(self) -> bool:
        return self.granted


class SessionState(str, enum.Enum):
    IDLE = "idle"
    ENUMERATING = "enumerating"
    SCANNING = "scanning"
    STOPPED = "stopped"


class ScanSessionController:
    """Runs one sighting session: bonded snapshot first, then live scanning.

    Every event goes through :meth:`DeviceRegistry.upsert` and then
    :meth:`SightingLogger.record`. The controller lock covers both the state
    and the live pipeline, so once :meth:`stop` returns no further live event
    is processed. A stopped controller cannot be restarted.
    """

    def __init__(
        self,
        live: LiveScanSource,
        *,
        bonded: Optional[BondedSnapshotSource] = None,
        registry: Optional[DeviceRegistry] = None,
        sighting_logger: Optional[SightingLogger] = None,
        authorizer: Optional[Authorizer] = None,
    ) -> None:
        self.live = live
        self.bonded = bonded
        self.registry = registry if registry is not None else DeviceRegistry()
        self.sighting_logger = sighting_logger if sighting_logger is not None else SightingLogger()
        self.authorizer = authorizer
        self._state = SessionState.IDLE
        self._lock = threading.RLock()

    @classmethod
    def for_adapter(
        cls,
        adapter: RadioAdapter,
        *,
        sink: Optional[LineSink] = None,
        include_bonded: bool = True,
        authorizer: Optional[Authorizer] = None,
        clock: Callable[[], datetime] | None = None,
    ) -> "ScanSessionController":
        if authorizer is None and callable(getattr(adapter, "authorized", None)):
            authorizer = adapter  # type: ignore[assignment]
        return cls(
            LiveScanSource(adapter),
            bonded=BondedSnapshotSource.from_adapter(adapter) if include_bonded else None,
            registry=DeviceRegistry(clock=clock),
            sighting_logger=SightingLogger(sink),
            authorizer=authorizer,
        )

    @property
    def state(self) -> SessionState:
        return self._state

    def start(self) -> None:
        with self._lock:
            if self._state is not SessionState.IDLE:
                raise SessionStateError(f"cannot start a session in state {self._state.value}")

            self._check_authorized()
            bonded = self._fetch_bonded()

            self._state = SessionState.ENUMERATING
            logger.info("enumerating %d bonded device(s)", len(bonded))
            for candidate in bonded:
                self._route(candidate)

            self._state = SessionState.SCANNING
            try:
                self.live.subscribe(self._on_live)
            except Exception as exc:
                self._state = SessionState.STOPPED
                logger.exception("failed to subscribe to live scan events")
                raise PreconditionError(f"live scan subscription failed: {exc}") from exc
            logger.info("scanning for nearby devices")

    def stop(self) -> None:
        with self._lock:
            if self._state is SessionState.STOPPED:
                return
            previous = self._state
            self._state = SessionState.STOPPED
            if previous is SessionState.SCANNING:
                try:
                    self.live.unsubscribe()
                except Exception:
                    logger.exception("error while unsubscribing from live scan events")
            logger.info("session stopped with %d device(s) seen", len(self.registry))
        # flushing may wait on a slow sink; keep it outside the pipeline lock
        self.sighting_logger.close()

    def snapshot(self) -> List[DeviceRecord]:
        return self.registry.snapshot()

    def stats(self) -> Dict[str, Any]:
        sink = self.sighting_logger.sink
        return {
            "state": self._state.value,
            "devices": len(self.registry),
            "lines_written": self.sighting_logger.lines_written,
            "sink_failures": self.sighting_logger.failure_count + getattr(sink, "failure_count", 0),
            "sink_dropped": getattr(sink, "dropped_count", 0),
            "malformed_events": self.live.malformed_count,
            "bonded_skipped": self.bonded.skipped_count if self.bonded is not None else 0,
        }

    def _check_authorized(self) -> None:
        if self.authorizer is None:
            return
        try:
            granted = self.authorizer.authorized()
        except Exception as exc:
            raise PreconditionError(f"authorization check failed: {exc}") from exc
        if not granted:
            raise AuthorizationError("radio access is not authorized")

    def _fetch_bonded(self) -> List[DeviceRecord]:
        if self.bonded is None:
            return []
        try:
            return list(self.bonded.records())
        except Exception as exc:
            raise PreconditionError(f"could not enumerate bonded devices: {exc}") from exc

    def _on_live(self, candidate: DeviceRecord) -> None:
        with self._lock:
            if self._state is not SessionState.SCANNING:
                logger.debug("ignoring live event for %s after stop", candidate.address)
                return
            self._route(candidate)

    def _route(self, candidate: DeviceRecord) -> None:
        try:
            record, is_new = self.registry.upsert(candidate)
        except InvalidRecordError:
            logger.warning("discarding sighting without an address: %r", candidate)
            return
        self.sighting_logger.record(record, is_new)


__all__ = [
    "Authorizer",
    "StaticAuthorizer",
    "SessionState",
    "ScanSessionController",
]
