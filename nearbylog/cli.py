"""nearbylog command-line interface."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from typing import Any, Dict, List, Optional, Sequence

import uvicorn
from rich.console import Console
from rich.table import Table

from nearbylog.adapters import BleakRadioAdapter, ScanConfig
from nearbylog.errors import NearbyLogError
from nearbylog.runner import ScanRunner
from nearbylog.sinks import BufferedSink, ConsoleSink, FileSink, LineSink, TeeSink


def _configure_logging(verbose: bool) -> None:
	logging.basicConfig(
		level=logging.DEBUG if verbose else logging.WARNING,
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
		stream=sys.stderr,
	)


def _render_table(title: str, columns: Sequence[str], rows: List[Dict[str, Any]]) -> None:
	console = Console()
	table = Table(title=title, show_lines=False)
	for column in columns:
		table.add_column(column.upper().replace("_", " "))
	for entry in rows:
		table.add_row(*(str(entry.get(column) if entry.get(column) is not None else "") for column in columns))
	console.print(table)


def _build_sink(args: argparse.Namespace) -> LineSink:
	# keep stdout clean for the JSON document
	sink: LineSink = ConsoleSink(sys.stderr if args.json else sys.stdout)
	if args.log:
		sink = TeeSink(sink, FileSink(args.log))
	return sink


async def _cmd_scan(args: argparse.Namespace) -> int:
	adapter = BleakRadioAdapter(ScanConfig(adapter=args.adapter, scanning_mode=args.scanning_mode))
	sink = BufferedSink(_build_sink(args), capacity=args.buffer)
	runner = ScanRunner(adapter, sink=sink, include_bonded=not args.no_bonded)

	loop = asyncio.get_running_loop()
	for sig in (signal.SIGINT, signal.SIGTERM):
		with contextlib.suppress(NotImplementedError):
			loop.add_signal_handler(sig, runner.request_stop)

	try:
		snapshot = await runner.run(runtime=args.runtime)
	finally:
		sink.close()

	stats = runner.stats()
	if stats["sink_dropped"]:
		sys.stderr.write(f"warning: {stats['sink_dropped']} sighting line(s) dropped by a slow sink\n")

	data = [record.to_dict() for record in snapshot]
	if args.json:
		json.dump(data, sys.stdout, indent=2)
		sys.stdout.write("\n")
		return 0
	_render_table(
		"Nearby Devices",
		("address", "name", "is_connected", "first_seen_at", "last_seen_at"),
		data,
	)
	return 0


async def _cmd_bonded(args: argparse.Namespace) -> int:
	adapter = BleakRadioAdapter(ScanConfig(adapter=args.adapter))
	devices = await asyncio.to_thread(adapter.bonded_devices)
	data = [{"address": device.address, "name": device.name} for device in devices]
	if args.json:
		json.dump(data, sys.stdout, indent=2)
		sys.stdout.write("\n")
		return 0
	_render_table("Bonded Devices", ("address", "name"), data)
	return 0


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="Log nearby Bluetooth devices")
	parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
	parser.add_argument("--adapter", help="BLE adapter identifier (e.g. hci0)")
	sub = parser.add_subparsers(dest="command", required=True)

	scan = sub.add_parser("scan", help="Log bonded and nearby devices until stopped")
	scan.add_argument("--runtime", type=float, help="Stop after this many seconds")
	scan.add_argument("--log", help="Also append sighting lines to this file")
	scan.add_argument("--no-bonded", action="store_true", help="Skip the bonded device snapshot")
	scan.add_argument("--scanning-mode", choices=("active", "passive"), help="BLE scanning mode")
	scan.add_argument("--buffer", type=int, default=1024, help="Pending sighting lines kept before dropping")
	scan.add_argument("--json", action="store_true", help="Print the final device list as JSON")
	scan.set_defaults(handler=_cmd_scan)

	bonded = sub.add_parser("bonded", help="List devices bonded with the local adapter")
	bonded.add_argument("--json", action="store_true", help="Output JSON")
	bonded.set_defaults(handler=_cmd_bonded)

	serve = sub.add_parser("serve", help="Run the HTTP API")
	serve.add_argument("--host", default="127.0.0.1", help="Bind address")
	serve.add_argument("--port", type=int, default=8000, help="Bind port")
	serve.set_defaults(handler=None)

	return parser


def main(argv: Optional[List[str]] = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)
	if getattr(args, "buffer", 1) <= 0:
		parser.error("--buffer must be positive")
	_configure_logging(args.verbose)
	if args.command == "serve":
		uvicorn.run("nearbylog.api:app", host=args.host, port=args.port, log_level="debug" if args.verbose else "info")
		return 0
	try:
		return asyncio.run(args.handler(args))
	except NearbyLogError as exc:
		sys.stderr.write(f"error: {exc}\n")
		return 1
	except ValueError as exc:
		parser.error(str(exc))


if __name__ == "__main__":
	sys.exit(main())
