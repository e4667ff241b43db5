"""Log nearby Bluetooth devices, bonded and newly discovered."""
from nearbylog.controller import ScanSessionController, SessionState, StaticAuthorizer
from nearbylog.errors import (
    AuthorizationError,
    InvalidRecordError,
    MalformedEventWarning,
    NearbyLogError,
    PreconditionError,
    RadioUnavailableError,
    SessionStateError,
    SinkWriteFailure,
)
from nearbylog.models import DeviceRecord
from nearbylog.registry import DeviceRegistry
from nearbylog.sighting_logger import SightingLogger
from nearbylog.sources import BondedSnapshotSource, LiveScanSource

__version__ = "0.1.0"

__all__ = [
    "DeviceRecord",
    "DeviceRegistry",
    "BondedSnapshotSource",
    "LiveScanSource",
    "SightingLogger",
    "ScanSessionController",
    "SessionState",
    "StaticAuthorizer",
    "NearbyLogError",
    "InvalidRecordError",
    "MalformedEventWarning",
    "SinkWriteFailure",
    "PreconditionError",
    "AuthorizationError",
    "SessionStateError",
    "RadioUnavailableError",
]
