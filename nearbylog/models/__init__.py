"""Value types shared across the sighting pipeline."""
from .device_record import DeviceRecord, ensure_utc, isoformat_utc, normalize_address, normalize_name

__all__ = [
    "DeviceRecord",
    "ensure_utc",
    "isoformat_utc",
    "normalize_address",
    "normalize_name",
]
