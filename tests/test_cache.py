"""Tests for iotc-provision credential cache."""

import math
import threading

import pytest

from iotc_provision.cache import CredentialCache, DeviceRecord
from iotc_provision.errors import RegistrationThrottled
from iotc_provision.identity import ConnectionCredential

from conftest import FakeClock


class TestDeviceRecord:
    """Tests for DeviceRecord."""

    def test_defaults(self):
        """Test that a new record is empty."""
        record = DeviceRecord()
        assert record.derived_key is None
        assert record.credential is None
        assert record.last_attempt is None


class TestCredentialCache:
    """Tests for CredentialCache."""

    def test_unknown_device(self, cache: CredentialCache):
        """Test lookup of a device never seen."""
        assert cache.get("nope") == DeviceRecord()
        assert "nope" not in cache

    def test_set_fields_independently(self, cache: CredentialCache):
        """Test that updates keep the other fields."""
        credential = ConnectionCredential("hub", "dev-A", "key")
        cache.set_derived_key("dev-A", "key")
        cache.record_attempt("dev-A", 5.0)
        cache.set_credential("dev-A", credential)

        record = cache.get("dev-A")
        assert record.derived_key == "key"
        assert record.last_attempt == 5.0
        assert record.credential == credential

    def test_record_attempt_uses_clock(self, cache: CredentialCache, clock: FakeClock):
        """Test the default attempt timestamp."""
        cache.record_attempt("dev-A")
        assert cache.get("dev-A").last_attempt == clock.time()

    def test_time_since_last_attempt(self, cache: CredentialCache, clock: FakeClock):
        """Test elapsed time computation."""
        assert cache.time_since_last_attempt("dev-A") == math.inf

        cache.record_attempt("dev-A")
        clock.advance(12.5)
        assert cache.time_since_last_attempt("dev-A") == 12.5
        assert cache.time_since_last_attempt("dev-A", now=clock.time() + 1) == 13.5

    def test_clear(self, cache: CredentialCache):
        """Test forgetting all devices."""
        cache.set_derived_key("dev-A", "key")
        cache.clear()
        assert "dev-A" not in cache


class TestBeginAttempt:
    """Tests for the registration attempt gate."""

    def test_first_attempt_recorded(self, cache: CredentialCache, clock: FakeClock):
        """Test that the first attempt passes and is recorded."""
        assert cache.begin_attempt("dev-A") == clock.time()
        assert cache.get("dev-A").last_attempt == clock.time()

    def test_second_attempt_throttled(self, cache: CredentialCache, clock: FakeClock):
        """Test that a quick retry is refused with the remaining backoff."""
        cache.begin_attempt("dev-A")
        first = cache.get("dev-A").last_attempt
        clock.advance(15.7)

        with pytest.raises(RegistrationThrottled) as exc_info:
            cache.begin_attempt("dev-A")

        assert exc_info.value.retry_after == 44
        assert exc_info.value.device_id == "dev-A"
        assert "Please try again in 44 seconds" in str(exc_info.value)
        # A refused attempt does not move the window
        assert cache.get("dev-A").last_attempt == first

    def test_attempt_after_interval(self, cache: CredentialCache, clock: FakeClock):
        """Test that the gate opens once the interval has passed."""
        cache.begin_attempt("dev-A")
        clock.advance(60)
        assert cache.begin_attempt("dev-A") == clock.time()

    def test_devices_are_independent(self, cache: CredentialCache):
        """Test that throttling is per device."""
        cache.begin_attempt("dev-A")
        cache.begin_attempt("dev-B")

    def test_custom_interval(self, clock: FakeClock):
        """Test a shorter minimum interval."""
        cache = CredentialCache(min_registration_interval=5, clock=clock.time)
        cache.begin_attempt("dev-A")
        clock.advance(5)
        cache.begin_attempt("dev-A")

    def test_concurrent_attempts_admit_one(self, cache: CredentialCache):
        """Test that racing callers cannot both pass the gate."""
        barrier = threading.Barrier(8)
        admitted = []
        throttled = []

        def attempt():
            barrier.wait()
            try:
                cache.begin_attempt("dev-A")
                admitted.append(True)
            except RegistrationThrottled:
                throttled.append(True)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(admitted) == 1
        assert len(throttled) == 7


class TestDeviceLock:
    """Tests for per-device locks."""

    def test_same_lock_per_device(self, cache: CredentialCache):
        """Test that a device always gets the same lock."""
        assert cache.device_lock("dev-A") is cache.device_lock("dev-A")

    def test_distinct_locks(self, cache: CredentialCache):
        """Test that devices get distinct locks."""
        assert cache.device_lock("dev-A") is not cache.device_lock("dev-B")
