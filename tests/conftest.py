"""Pytest configuration and fixtures for iotc-provision tests."""

import tempfile
from pathlib import Path
from typing import Any, Generator, List, Optional, Tuple

import httpx
import pytest

from iotc_provision.cache import CredentialCache
from iotc_provision.config import ProvisioningSettings, RegistrationConfig
from iotc_provision.identity import DeviceIdentity

# base64 of 16 zero bytes
ZERO_GROUP_KEY = "AAAAAAAAAAAAAAAAAAAAAA=="
# derive_device_key(ZERO_GROUP_KEY, "dev-A")
DEV_A_KEY = "8XlRb3lc6jiAHUE0NYeFMH1jnaSbEWxAKRrNmTmckIU="

ASSIGNING = {"status": "assigning", "operationId": "op-1"}
ASSIGNED = {
    "status": "assigned",
    "registrationState": {"assignedHub": "hub1.azure-devices.net", "deviceId": "dev-A"},
}


class FakeClock:
    """Clock whose sleep advances time instead of blocking."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDps:
    """In-process stand-in for the Device Provisioning Service.

    Poll responses are served in order; the last one repeats once the
    list is used up. Entries may be JSON-able dicts or ``httpx.Response``.
    """

    def __init__(
        self,
        poll_responses: Optional[List[Any]] = None,
        register_response: Any = None,
        clock: Optional[FakeClock] = None,
    ) -> None:
        self.register_response = ASSIGNING if register_response is None else register_response
        self.poll_responses = list(poll_responses or [ASSIGNED])
        self.clock = clock
        self.requests: List[httpx.Request] = []
        self.request_times: List[Tuple[str, float]] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def puts(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == "PUT"]

    @property
    def gets(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == "GET"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.clock is not None:
            self.request_times.append((request.method, self.clock.time()))

        if request.method == "PUT":
            return self._respond(self.register_response)

        if len(self.poll_responses) > 1:
            return self._respond(self.poll_responses.pop(0))
        return self._respond(self.poll_responses[0])

    @staticmethod
    def _respond(item: Any) -> httpx.Response:
        if isinstance(item, httpx.Response):
            return item
        return httpx.Response(200, json=item)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock starting at a fixed epoch."""
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> CredentialCache:
    """Credential cache driven by the fake clock."""
    return CredentialCache(clock=clock.time)


@pytest.fixture
def identity() -> DeviceIdentity:
    """Identity of the sample device."""
    return DeviceIdentity(device_id="dev-A", id_scope="scope1")


@pytest.fixture
def settings() -> ProvisioningSettings:
    """Complete provisioning settings for the sample device."""
    return ProvisioningSettings(
        id_scope="scope1",
        group_key=ZERO_GROUP_KEY,
        device_id="dev-A",
        registration=RegistrationConfig(),
    )


@pytest.fixture
def sample_env() -> dict:
    """Environment variables for the sample device."""
    return {
        "ID_SCOPE": "scope1",
        "IOTC_SAS_KEY": ZERO_GROUP_KEY,
        "DEVICE_ID": "dev-A",
    }
