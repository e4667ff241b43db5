"""Session-scoped store of device sightings keyed by address."""
from __future__ import annotations

import dataclasses
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from nearbylog.errors import InvalidRecordError
from nearbylog.models import DeviceRecord, ensure_utc, normalize_address

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """In-memory registry with one record per device address.

    All mutation goes through :meth:`upsert`, which is serialized by a single
    lock so the bonded drain and live callbacks may call it from different
    threads. Records are frozen; callers only ever see immutable values.
    """

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._records: Dict[str, DeviceRecord] = {}
        # insertion sequence breaks ties between equal first_seen_at values
        self._order: Dict[str, int] = {}
        self._lock = threading.Lock()

    def upsert(self, candidate: DeviceRecord) -> Tuple[DeviceRecord, bool]:
        address = normalize_address(candidate.address)
        if not address:
            raise InvalidRecordError("cannot store a device record with an empty address")

        with self._lock:
            now = self._now()
            existing = self._records.get(address)
            if existing is None:
                record = DeviceRecord(
                    address=address,
                    name=candidate.name or None,
                    is_connected=bool(candidate.is_connected),
                    first_seen_at=now,
                    last_seen_at=now,
                )
                self._records[address] = record
                self._order[address] = len(self._order)
                logger.debug("registered %s (connected=%s)", address, record.is_connected)
                return record, True

            last_seen = existing.last_seen_at
            if last_seen is not None and now < last_seen:
                now = last_seen
            record = dataclasses.replace(
                existing,
                name=existing.name or candidate.name or None,
                is_connected=existing.is_connected or bool(candidate.is_connected),
                last_seen_at=now,
            )
            self._records[address] = record
            logger.debug("updated %s (connected=%s)", address, record.is_connected)
            return record, False

    def snapshot(self) -> List[DeviceRecord]:
        """Return all records ordered by ``first_seen_at`` ascending."""
        with self._lock:
            records = list(self._records.values())
            order = dict(self._order)
        return sorted(records, key=lambda rec: (rec.first_seen_at, order[rec.address]))

    def get(self, address: str) -> Optional[DeviceRecord]:
        with self._lock:
            return self._records.get(normalize_address(address))

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, address: object) -> bool:
        if not isinstance(address, str):
            return False
        with self._lock:
            return normalize_address(address) in self._records

    def _now(self) -> datetime:
        try:
            return ensure_utc(self._clock())
        except Exception:  # pragma: no cover - guard against faulty clock
            logger.debug("registry clock failed; falling back to wall clock", exc_info=True)
            return datetime.now(timezone.utc)


__all__ = ["DeviceRegistry"]
