"""Radio adapter backed by bleak (live advertisements) and BlueZ bluetoothctl."""
from __future__ import annotations

import logging
import re
import subprocess
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, TYPE_CHECKING, TypeAlias

from bleak import BleakScanner

from nearbylog.errors import RadioUnavailableError

logger = logging.getLogger(__name__)

if TYPE_CHECKING:  # pragma: no cover - typing helper only
	from bleak.backends.device import BLEDevice as _BLEDevice
	from bleak.backends.scanner import AdvertisementData as _AdvertisementData
else:  # pragma: no cover
	_BLEDevice = Any
	_AdvertisementData = Any

BLEDevice: TypeAlias = _BLEDevice
AdvertisementData: TypeAlias = _AdvertisementData
DetectionCallback = Callable[..., None]
CommandRunner = Callable[..., "subprocess.CompletedProcess[str]"]

_DEVICE_LINE = re.compile(r"^Device\s+(?P<address>(?:[0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2})(?:\s+(?P<name>.*))?$")
_SCANNING_MODES = ("active", "passive")


@dataclass(slots=True, frozen=True)
class BondedDevice:
	"""A device listed by ``bluetoothctl devices Paired``."""

	address: str
	name: Optional[str] = None


@dataclass(slots=True)
class ScanConfig:
	"""Configuration bundle used by :class:`BleakRadioAdapter`."""

	adapter: Optional[str] = None
	scanning_mode: Optional[str] = None
	service_uuids: Sequence[str] | None = None
	bluetoothctl: str = "bluetoothctl"
	command_timeout: float = 5.0
	detection_kwargs: Dict[str, Any] = field(default_factory=dict)

	def __post_init__(self) -> None:
		if self.command_timeout <= 0:
			raise ValueError("command_timeout must be positive")
		if self.scanning_mode is not None and self.scanning_mode not in _SCANNING_MODES:
			raise ValueError(f"scanning_mode must be one of {', '.join(_SCANNING_MODES)}")

	def bleak_kwargs(self) -> Dict[str, Any]:
		kwargs = dict(self.detection_kwargs)
		if self.service_uuids and "service_uuids" not in kwargs:
			kwargs["service_uuids"] = list(self.service_uuids)
		if self.adapter and "adapter" not in kwargs:
			kwargs["adapter"] = self.adapter
		if self.scanning_mode and "scanning_mode" not in kwargs:
			kwargs["scanning_mode"] = self.scanning_mode
		return kwargs


def parse_device_lines(output: str) -> List[BondedDevice]:
	devices: List[BondedDevice] = []
	for raw in output.splitlines():
		match = _DEVICE_LINE.match(raw.strip())
		if not match:
			continue
		address = match.group("address").upper()
		name = (match.group("name") or "").strip() or None
		# bluetoothctl prints the dashed address when a device has no alias
		if name and name.upper() == address.replace(":", "-"):
			name = None
		devices.append(BondedDevice(address=address, name=name))
	return devices


class BleakRadioAdapter:
	"""Radio collaborator for BlueZ hosts.

	Use as an async context manager: entering starts a ``BleakScanner`` whose
	detections are fanned out to every registered callback, exiting stops it.
	Bonded devices and the adapter power state come from ``bluetoothctl``.
	"""

	def __init__(
		self,
		config: ScanConfig | None = None,
		*,
		scanner_factory: Optional[Callable[..., Any]] = None,
		command_runner: Optional[CommandRunner] = None,
	) -> None:
		self.config = config or ScanConfig()
		self._scanner_factory = scanner_factory or BleakScanner
		self._run = command_runner or subprocess.run
		self._callbacks: List[DetectionCallback] = []
		self._lock = threading.Lock()
		self._scanner: Optional[Any] = None

	# ---------------------------------------------------------------------
	# Live broadcasts
	# ---------------------------------------------------------------------
	def register(self, callback: DetectionCallback) -> None:
		with self._lock:
			self._callbacks.append(callback)

	def unregister(self, callback: DetectionCallback) -> None:
		with self._lock:
			try:
				self._callbacks.remove(callback)
			except ValueError:
				logger.debug("unregister called for an unknown callback")

	@property
	def scanning(self) -> bool:
		return self._scanner is not None

	async def start(self) -> None:
		if self._scanner is not None:
			return
		scanner = self._scanner_factory(detection_callback=self._on_detection, **self.config.bleak_kwargs())
		try:
			await scanner.start()
		except Exception as exc:
			logger.exception("BLE scan failed to start: %s", exc)
			raise RadioUnavailableError(f"could not start BLE scan: {exc}") from exc
		self._scanner = scanner
		logger.debug("BLE scanner started")

	async def stop(self) -> None:
		scanner, self._scanner = self._scanner, None
		if scanner is None:
			return
		try:
			await scanner.stop()
		except Exception:  # pragma: no cover - hardware specific
			logger.exception("BLE scanner failed to stop cleanly")
		logger.debug("BLE scanner stopped")

	async def __aenter__(self) -> "BleakRadioAdapter":
		await self.start()
		return self

	async def __aexit__(self, exc_type, exc, tb) -> bool:
		await self.stop()
		return False

	def _on_detection(self, device: BLEDevice, advertisement: AdvertisementData | None = None) -> None:
		with self._lock:
			callbacks = list(self._callbacks)
		for callback in callbacks:
			try:
				callback(device, advertisement)
			except Exception:  # pragma: no cover - diagnostic path
				logger.exception("detection callback raised an exception")

	# ---------------------------------------------------------------------
	# bluetoothctl helpers
	# ---------------------------------------------------------------------
	def bonded_devices(self) -> List[BondedDevice]:
		try:
			output = self._bluetoothctl("devices", "Paired")
		except RadioUnavailableError:
			# bluez < 5.65 only knows the older command
			output = self._bluetoothctl("paired-devices")
		devices = parse_device_lines(output)
		logger.debug("bluetoothctl reported %d bonded device(s)", len(devices))
		return devices

	def authorized(self) -> bool:
		output = self._bluetoothctl("show")
		if "No default controller" in output:
			logger.warning("no Bluetooth controller available")
			return False
		powered = any(line.strip() == "Powered: yes" for line in output.splitlines())
		if not powered:
			logger.warning("Bluetooth controller is powered off")
		return powered

	def _bluetoothctl(self, *args: str) -> str:
		command = [self.config.bluetoothctl, *args]
		try:
			completed = self._run(
				command,
				capture_output=True,
				text=True,
				timeout=self.config.command_timeout,
				check=False,
			)
		except FileNotFoundError as exc:
			raise RadioUnavailableError(f"{self.config.bluetoothctl} not found") from exc
		except subprocess.TimeoutExpired as exc:
			raise RadioUnavailableError(f"{' '.join(command)} timed out") from exc
		if completed.returncode != 0:
			message = (completed.stderr or completed.stdout or "").strip()
			raise RadioUnavailableError(f"{' '.join(command)} failed: {message}")
		return completed.stdout or ""


__all__ = [
	"BondedDevice",
	"ScanConfig",
	"BleakRadioAdapter",
	"parse_device_lines",
]
