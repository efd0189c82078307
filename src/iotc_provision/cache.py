"""Per-device credential cache with a registration attempt gate."""

import logging
import math
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional

from .errors import RegistrationThrottled
from .identity import ConnectionCredential

logger = logging.getLogger(__name__)

DEFAULT_MIN_REGISTRATION_INTERVAL = 60.0


@dataclass(frozen=True)
class DeviceRecord:
    """Cached state for one device."""

    derived_key: Optional[str] = None
    credential: Optional[ConnectionCredential] = None
    last_attempt: Optional[float] = None


class CredentialCache:
    """In-memory store of derived keys, credentials and attempt times.

    Records are immutable snapshots; every update swaps the record under
    an internal lock. ``device_lock`` hands out one lock per device so that
    callers can keep a single registration in flight per device.
    """

    def __init__(
        self,
        min_registration_interval: float = DEFAULT_MIN_REGISTRATION_INTERVAL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize cache.

        Args:
            min_registration_interval: Seconds between registration attempts
            clock: Source of epoch seconds
        """
        self.min_registration_interval = min_registration_interval
        self.clock = clock
        self._records: Dict[str, DeviceRecord] = {}
        self._device_locks: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def get(self, device_id: str) -> DeviceRecord:
        """Return the record for a device (empty if unknown)."""
        with self._lock:
            return self._records.get(device_id, DeviceRecord())

    def __contains__(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._records

    def _update(self, device_id: str, **changes) -> DeviceRecord:
        with self._lock:
            record = replace(self._records.get(device_id, DeviceRecord()), **changes)
            self._records[device_id] = record
            return record

    def set_derived_key(self, device_id: str, derived_key: str) -> None:
        self._update(device_id, derived_key=derived_key)

    def set_credential(self, device_id: str, credential: ConnectionCredential) -> None:
        self._update(device_id, credential=credential)

    def record_attempt(self, device_id: str, timestamp: Optional[float] = None) -> None:
        self._update(
            device_id, last_attempt=self.clock() if timestamp is None else timestamp
        )

    def time_since_last_attempt(self, device_id: str, now: Optional[float] = None) -> float:
        """Seconds since the last registration attempt, ``math.inf`` if none."""
        last_attempt = self.get(device_id).last_attempt
        if last_attempt is None:
            return math.inf
        if now is None:
            now = self.clock()
        return now - last_attempt

    def begin_attempt(self, device_id: str, now: Optional[float] = None) -> float:
        """Check the attempt gate and record a new attempt in one step.

        Args:
            device_id: Device about to be registered
            now: Attempt start time (defaults to the cache clock)

        Returns:
            The recorded attempt timestamp

        Raises:
            RegistrationThrottled: If the previous attempt is too recent.
                Nothing is recorded in that case.
        """
        if now is None:
            now = self.clock()

        with self._lock:
            record = self._records.get(device_id, DeviceRecord())
            if record.last_attempt is not None:
                elapsed = now - record.last_attempt
                if elapsed < self.min_registration_interval:
                    retry_after = math.floor(self.min_registration_interval - elapsed)
                    logger.warning(
                        "Registration of %s throttled, retry in %ds", device_id, retry_after
                    )
                    raise RegistrationThrottled(device_id, retry_after)
            self._records[device_id] = replace(record, last_attempt=now)

        return now

    def device_lock(self, device_id: str) -> threading.Lock:
        """Return the lock serializing provisioning of one device."""
        with self._lock:
            lock = self._device_locks.get(device_id)
            if lock is None:
                lock = threading.Lock()
                self._device_locks[device_id] = lock
            return lock

    def clear(self) -> None:
        """Forget all cached devices."""
        with self._lock:
            self._records.clear()
