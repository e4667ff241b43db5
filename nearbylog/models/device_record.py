from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from nearbylog.errors import InvalidRecordError


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_utc(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="milliseconds")


def normalize_address(address: Any) -> str:
    if address is None:
        return ""
    return str(address).strip().upper()


def normalize_name(name: Any) -> Optional[str]:
    if name is None:
        return None
    text = str(name).strip()
    return text or None


@dataclass(frozen=True, eq=False, slots=True)
class DeviceRecord:
    """One sighting of a nearby device.

    Records compare and hash by ``address`` only. Timestamps are left unset on
    candidates built by event sources and stamped by the registry.
    """
    address: str
    name: Optional[str] = None
    is_connected: bool = False
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None

    @classmethod
    def from_sighting(cls, address: Any, name: Any = None, is_connected: bool = False) -> "DeviceRecord":
        """Build a normalized candidate, rejecting a missing address."""
        normalized = normalize_address(address)
        if not normalized:
            raise InvalidRecordError("device record requires a non-empty address")
        return cls(address=normalized, name=normalize_name(name), is_connected=bool(is_connected))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DeviceRecord):
            return NotImplemented
        return self.address == other.address

    def __hash__(self) -> int:
        return hash(self.address)

    @property
    def status(self) -> str:
        return "Connected" if self.is_connected else "Disconnected"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "name": self.name,
            "is_connected": self.is_connected,
            "first_seen_at": isoformat_utc(self.first_seen_at),
            "last_seen_at": isoformat_utc(self.last_seen_at),
        }
