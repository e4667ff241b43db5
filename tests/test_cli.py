"""Command-line entry point tests with the radio adapter patched out."""
from __future__ import annotations

import io
import json
import unittest
from contextlib import redirect_stderr, redirect_stdout
from types import SimpleNamespace
from typing import Any, Callable, List
from unittest.mock import patch

from nearbylog import cli
from nearbylog.adapters import BondedDevice


class _FakeRadio:
    def __init__(self, config: Any = None) -> None:
        self.config = config
        self.callbacks: List[Callable[..., None]] = []

    def bonded_devices(self) -> List[BondedDevice]:
        return [BondedDevice("11:22", "Watch")]

    def authorized(self) -> bool:
        return True

    def register(self, callback: Callable[..., None]) -> None:
        self.callbacks.append(callback)

    def unregister(self, callback: Callable[..., None]) -> None:
        self.callbacks.remove(callback)

    async def __aenter__(self):
        for callback in list(self.callbacks):
            callback(SimpleNamespace(address="33:44", name="Headset"), None)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class _UnpoweredRadio(_FakeRadio):
    def authorized(self) -> bool:
        return False


class CliTest(unittest.TestCase):
    def test_bonded_json(self) -> None:
        stdout = io.StringIO()
        with patch("nearbylog.cli.BleakRadioAdapter", _FakeRadio), redirect_stdout(stdout):
            code = cli.main(["bonded", "--json"])
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(stdout.getvalue()), [{"address": "11:22", "name": "Watch"}])

    def test_scan_json_prints_snapshot_and_streams_lines_to_stderr(self) -> None:
        stdout, stderr = io.StringIO(), io.StringIO()
        with patch("nearbylog.cli.BleakRadioAdapter", _FakeRadio), redirect_stdout(stdout), redirect_stderr(stderr):
            code = cli.main(["scan", "--runtime", "0.05", "--json"])
        self.assertEqual(code, 0)
        data = json.loads(stdout.getvalue())
        self.assertEqual([entry["address"] for entry in data], ["11:22", "33:44"])
        self.assertIn("Connected device new: name=Watch", stderr.getvalue())
        self.assertIn("Disconnected device new: name=Headset", stderr.getvalue())

    def test_scan_reports_precondition_failure(self) -> None:
        stderr = io.StringIO()
        with patch("nearbylog.cli.BleakRadioAdapter", _UnpoweredRadio), redirect_stderr(stderr):
            code = cli.main(["scan", "--runtime", "0.05"])
        self.assertEqual(code, 1)
        self.assertIn("not authorized", stderr.getvalue())

    def test_buffer_must_be_positive(self) -> None:
        with redirect_stderr(io.StringIO()), self.assertRaises(SystemExit):
            cli.main(["scan", "--buffer", "0"])


if __name__ == "__main__":
    unittest.main()
