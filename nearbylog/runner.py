"""Async supervisor running one scan session against a radio adapter."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from nearbylog.controller import Authorizer, ScanSessionController, SessionState
from nearbylog.models import DeviceRecord
from nearbylog.sinks import LineSink

logger = logging.getLogger(__name__)


class ScanRunner:
    """Start a session, keep the adapter scanning, stop on request or timeout."""

    def __init__(
        self,
        adapter: Any,
        *,
        sink: Optional[LineSink] = None,
        include_bonded: bool = True,
        authorizer: Optional[Authorizer] = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.adapter = adapter
        self.controller = ScanSessionController.for_adapter(
            adapter,
            sink=sink,
            include_bonded=include_bonded,
            authorizer=authorizer,
            clock=clock,
        )
        # created up front so a stop requested before run() is honoured
        self._stop_event = asyncio.Event()

    @property
    def state(self) -> SessionState:
        return self.controller.state

    async def run(self, runtime: Optional[float] = None) -> List[DeviceRecord]:
        """Run until :meth:`request_stop` or ``runtime`` seconds elapse.

        Returns the final registry snapshot. Precondition failures from the
        controller propagate before any scanning starts.
        """
        stop_event = self._stop_event
        try:
            await asyncio.to_thread(self.controller.start)
            async with self.adapter:
                await self._wait(stop_event, runtime)
        finally:
            self.controller.stop()
            stop_event.set()
        snapshot = self.controller.snapshot()
        logger.info("scan session finished with %d device(s)", len(snapshot))
        return snapshot

    def request_stop(self) -> None:
        self._stop_event.set()

    def stats(self) -> Dict[str, Any]:
        return self.controller.stats()

    async def _wait(self, stop_event: asyncio.Event, runtime: Optional[float]) -> None:
        if runtime is None:
            await stop_event.wait()
            return
        if runtime <= 0:
            return
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=runtime)
        except asyncio.TimeoutError:
            pass


__all__ = ["ScanRunner"]
