"""Event sources that turn raw radio payloads into :class:`DeviceRecord` values."""
from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import Any, Callable, Iterable, Iterator, Optional, Protocol, Union

from nearbylog.errors import InvalidRecordError, MalformedEventWarning
from nearbylog.models import DeviceRecord

logger = logging.getLogger(__name__)

RecordCallback = Callable[[DeviceRecord], None]
RawCallback = Callable[..., None]
HandleProvider = Callable[[], Iterable[Any]]


class RadioAdapter(Protocol):
	"""Platform radio collaborator supplying bonded devices and live broadcasts."""

	def bonded_devices(self) -> Iterable[Any]: ...

	def register(self, callback: RawCallback) -> None: ...

	def unregister(self, callback: RawCallback) -> None: ...


def _field(handle: Any, key: str) -> Any:
	if isinstance(handle, Mapping):
		return handle.get(key)
	return getattr(handle, key, None)


def record_from_handle(handle: Any, advertisement: Any = None, *, is_connected: bool) -> DeviceRecord:
	"""Normalize a platform device handle into a candidate record.

	Accepts bleak ``BLEDevice`` objects (optionally with their advertisement
	data), plain objects exposing ``address``/``name`` and mappings.
	"""
	if handle is None:
		raise InvalidRecordError("notification carried no device")
	name = _field(handle, "name")
	if not name and advertisement is not None:
		name = getattr(advertisement, "local_name", None)
	return DeviceRecord.from_sighting(_field(handle, "address"), name, is_connected)


class BondedSnapshotSource:
	"""Finite snapshot of devices already bonded with the local adapter."""

	def __init__(self, handles: Union[Iterable[Any], HandleProvider]) -> None:
		self._handles = handles
		self._drained = False
		self.skipped_count = 0

	@classmethod
	def from_adapter(cls, adapter: RadioAdapter) -> "BondedSnapshotSource":
		return cls(adapter.bonded_devices)

	def records(self) -> Iterator[DeviceRecord]:
		"""Yield one connected record per bonded device. May be drained once."""
		if self._drained:
			raise RuntimeError("bonded snapshot has already been consumed")
		handles = list(self._handles() if callable(self._handles) else self._handles)
		# a failed fetch leaves the snapshot available for a retry
		self._drained = True
		return self._iter_records(handles)

	def _iter_records(self, handles: list[Any]) -> Iterator[DeviceRecord]:
		for handle in handles:
			try:
				yield record_from_handle(handle, is_connected=True)
			except InvalidRecordError:
				self.skipped_count += 1
				logger.warning("skipping bonded device without an address: %r", handle)


class LiveScanSource:
	"""Push-driven stream of devices found by an active scan."""

	def __init__(self, adapter: RadioAdapter) -> None:
		self.adapter = adapter
		self.malformed_count = 0
		self.last_malformed: Optional[MalformedEventWarning] = None
		self._callback: Optional[RecordCallback] = None
		self._lock = threading.Lock()

	@property
	def subscribed(self) -> bool:
		return self._callback is not None

	def subscribe(self, callback: RecordCallback) -> None:
		with self._lock:
			if self._callback is not None:
				raise RuntimeError("live scan source already has a subscriber")
			self._callback = callback
		self.adapter.register(self._on_notification)

	def unsubscribe(self) -> None:
		with self._lock:
			if self._callback is None:
				return
			self._callback = None
		try:
			self.adapter.unregister(self._on_notification)
		except (KeyError, ValueError):
			logger.debug("live callback was already unregistered")

	def _on_notification(self, device: Any, advertisement: Any = None) -> None:
		callback = self._callback
		if callback is None:
			return
		try:
			record = record_from_handle(device, advertisement, is_connected=False)
		except InvalidRecordError as exc:
			warning = MalformedEventWarning(f"dropped live notification: {exc}", payload=device)
			self.malformed_count += 1
			self.last_malformed = warning
			logger.warning("%s (payload=%r)", warning, device)
			return
		callback(record)


EventSource = Union[BondedSnapshotSource, LiveScanSource]


__all__ = [
	"EventSource",
	"RadioAdapter",
	"BondedSnapshotSource",
	"LiveScanSource",
	"record_from_handle",
]
