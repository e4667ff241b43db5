"""End-to-end behaviour of the scan session controller with fake collaborators."""
from __future__ import annotations

import io
import threading
import unittest
from contextlib import redirect_stdout
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Callable, List

from nearbylog.controller import ScanSessionController, SessionState, StaticAuthorizer
from nearbylog.errors import AuthorizationError, PreconditionError, SessionStateError
from nearbylog.models import DeviceRecord
from nearbylog.registry import DeviceRegistry
from nearbylog.sighting_logger import SightingLogger
from nearbylog.sinks import MemorySink
from nearbylog.sources import BondedSnapshotSource, LiveScanSource


class FakeRadio:
    def __init__(self, bonded: List[Any] | None = None) -> None:
        self.bonded = bonded or []
        self.callbacks: List[Callable[..., None]] = []
        self.bonded_error: Exception | None = None

    def bonded_devices(self) -> List[Any]:
        if self.bonded_error is not None:
            raise self.bonded_error
        return list(self.bonded)

    def register(self, callback: Callable[..., None]) -> None:
        self.callbacks.append(callback)

    def unregister(self, callback: Callable[..., None]) -> None:
        self.callbacks.remove(callback)

    def push(self, device: Any, advertisement: Any = None) -> None:
        for callback in list(self.callbacks):
            callback(device, advertisement)


class _RaisingAuthorizer:
    def authorized(self) -> bool:
        raise OSError("permission service unavailable")


def _clock():
    state = {"now": datetime(2024, 6, 1, 8, 0, 0, tzinfo=timezone.utc)}

    def tick() -> datetime:
        value = state["now"]
        state["now"] = value + timedelta(seconds=1)
        return value

    return tick


class ScanSessionControllerTest(unittest.TestCase):
    def setUp(self) -> None:
        self.radio = FakeRadio([SimpleNamespace(address="11:22", name="Watch")])
        self.sink = MemorySink()
        self.controller = ScanSessionController.for_adapter(
            self.radio,
            sink=self.sink,
            authorizer=StaticAuthorizer(True),
            clock=_clock(),
        )

    def test_end_to_end_sightings(self) -> None:
        self.controller.start()
        self.assertIs(self.controller.state, SessionState.SCANNING)
        self.assertEqual(len(self.sink.lines), 1)
        self.assertIn("Connected device new:", self.sink.lines[0])
        self.assertIn("name=Watch", self.sink.lines[0])

        self.radio.push(SimpleNamespace(address="33:44", name="Headset"))
        self.assertEqual(len(self.sink.lines), 2)
        self.assertIn("Disconnected device new:", self.sink.lines[1])
        self.assertIn("name=Headset", self.sink.lines[1])

        self.radio.push(SimpleNamespace(address="11:22", name=None))
        self.assertEqual(len(self.sink.lines), 3)
        self.assertTrue(self.sink.lines[2].startswith("Connected device seen again:"))
        self.assertIn("name=Watch", self.sink.lines[2])

        snapshot = self.controller.snapshot()
        self.assertEqual([r.address for r in snapshot], ["11:22", "33:44"])
        self.assertLess(snapshot[0].first_seen_at, snapshot[0].last_seen_at)

    def test_malformed_live_event_is_dropped(self) -> None:
        self.controller.start()
        with self.assertLogs("nearbylog.sources", level="WARNING"):
            self.radio.push(SimpleNamespace(address="", name="Broken"))
        self.assertEqual(len(self.sink.lines), 1)
        self.assertEqual(len(self.controller.registry), 1)
        self.assertEqual(self.controller.live.malformed_count, 1)
        self.assertEqual(self.controller.stats()["malformed_events"], 1)

    def test_stop_twice_is_a_noop(self) -> None:
        self.controller.start()
        self.controller.stop()
        self.controller.stop()
        self.assertIs(self.controller.state, SessionState.STOPPED)
        self.assertEqual(self.radio.callbacks, [])

    def test_stop_before_start_is_allowed(self) -> None:
        self.controller.stop()
        self.assertIs(self.controller.state, SessionState.STOPPED)
        with self.assertRaises(SessionStateError):
            self.controller.start()

    def test_events_after_stop_are_ignored(self) -> None:
        self.controller.start()
        on_live = self.controller._on_live
        self.controller.stop()
        self.radio.push(SimpleNamespace(address="33:44", name="Headset"))
        # a notification that was already in flight when stop ran
        on_live(DeviceRecord(address="55:66", name="Late"))
        self.assertEqual(len(self.sink.lines), 1)
        self.assertEqual(len(self.controller.registry), 1)

    def test_stopped_controller_cannot_restart(self) -> None:
        self.controller.start()
        self.controller.stop()
        with self.assertRaises(SessionStateError):
            self.controller.start()

    def test_start_twice_is_rejected(self) -> None:
        self.controller.start()
        with self.assertRaises(SessionStateError):
            self.controller.start()

    def test_unauthorized_start_stays_idle(self) -> None:
        controller = ScanSessionController.for_adapter(
            self.radio, sink=self.sink, authorizer=StaticAuthorizer(False)
        )
        with self.assertRaises(AuthorizationError):
            controller.start()
        self.assertIs(controller.state, SessionState.IDLE)
        self.assertEqual(self.sink.lines, [])
        self.assertEqual(self.radio.callbacks, [])

    def test_authorizer_failure_is_a_precondition_error(self) -> None:
        controller = ScanSessionController.for_adapter(
            self.radio, sink=self.sink, authorizer=_RaisingAuthorizer()
        )
        with self.assertRaises(PreconditionError):
            controller.start()
        self.assertIs(controller.state, SessionState.IDLE)

    def test_bonded_enumeration_failure_prevents_enumerating(self) -> None:
        self.radio.bonded_error = OSError("adapter gone")
        with self.assertRaises(PreconditionError):
            self.controller.start()
        self.assertIs(self.controller.state, SessionState.IDLE)
        self.assertEqual(self.sink.lines, [])

    def test_start_retry_after_enumeration_failure(self) -> None:
        self.radio.bonded_error = OSError("adapter gone")
        with self.assertRaises(PreconditionError):
            self.controller.start()
        self.assertIs(self.controller.state, SessionState.IDLE)

        self.radio.bonded_error = None
        self.controller.start()
        self.assertIs(self.controller.state, SessionState.SCANNING)
        self.assertEqual(len(self.sink.lines), 1)
        self.assertIn("Connected device new: name=Watch", self.sink.lines[0])

    def test_adapter_authorized_method_is_used_by_default(self) -> None:
        self.radio.authorized = lambda: False  # type: ignore[attr-defined]
        controller = ScanSessionController.for_adapter(self.radio, sink=self.sink)
        with self.assertRaises(AuthorizationError):
            controller.start()

    def test_stop_closes_default_sink(self) -> None:
        with redirect_stdout(io.StringIO()) as stdout:
            controller = ScanSessionController(LiveScanSource(self.radio))
            controller.start()
            self.radio.push({"address": "33:44", "name": "Headset"})
            controller.stop()
        self.assertIn("Disconnected device new: name=Headset", stdout.getvalue())
        with self.assertRaises(RuntimeError):
            controller.sighting_logger.sink.write("late")

    def test_without_bonded_source(self) -> None:
        controller = ScanSessionController(
            LiveScanSource(self.radio),
            registry=DeviceRegistry(),
            sighting_logger=SightingLogger(self.sink),
        )
        controller.start()
        self.assertEqual(self.sink.lines, [])
        self.radio.push({"address": "33:44", "name": "Headset"})
        self.assertEqual(len(self.sink.lines), 1)
        self.assertEqual(controller.stats()["bonded_skipped"], 0)

    def test_bonded_records_flow_through_registry(self) -> None:
        registry = DeviceRegistry()
        controller = ScanSessionController(
            LiveScanSource(self.radio),
            bonded=BondedSnapshotSource([{"address": "11:22", "name": "Watch"}, {"address": "11:22"}]),
            registry=registry,
            sighting_logger=SightingLogger(self.sink),
        )
        controller.start()
        self.assertEqual(len(registry), 1)
        self.assertIn("Connected device seen again:", self.sink.lines[1])

    def test_concurrent_live_events_and_stop(self) -> None:
        self.controller.start()
        barrier = threading.Barrier(3)

        def pusher(prefix: str) -> None:
            barrier.wait()
            for index in range(100):
                self.radio.push({"address": f"{prefix}:{index:02d}"})

        threads = [threading.Thread(target=pusher, args=(p,)) for p in ("AA", "BB")]
        for thread in threads:
            thread.start()
        barrier.wait()
        self.controller.stop()
        count_at_stop = len(self.sink.lines)
        for thread in threads:
            thread.join()

        self.assertEqual(len(self.sink.lines), count_at_stop)
        self.assertEqual(len(self.controller.registry), count_at_stop)


if __name__ == "__main__":
    unittest.main()
