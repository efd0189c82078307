"""Device registration against the Device Provisioning Service.

Registration is a two-phase protocol:

1. ``PUT /{scope}/registrations/{id}/register`` starts an operation and
   answers ``{"status": "assigning", "operationId": ...}``.
2. ``GET /{scope}/registrations/{id}/operations/{operationId}`` is polled
   until the operation is assigned to a hub or fails.

Only one submission per device is allowed within the cache's minimum
registration interval; the attempt is recorded before the request is sent.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from .cache import CredentialCache
from .config import RegistrationConfig
from .errors import (
    DeviceUnassociatedOrBlocked,
    RegistrationAttemptsExhausted,
    RegistrationError,
    RegistrationThrottled,
    RegistrationTransportError,
    UnexpectedServerResponse,
)
from .identity import DeviceIdentity
from .keys import TokenSigner

logger = logging.getLogger(__name__)

STATUS_ASSIGNING = "assigning"
STATUS_ASSIGNED = "assigned"
STATUS_FAILED = "failed"

# registrationState.errorCode for a device that is unassociated or blocked
ERROR_DEVICE_BLOCKED = 400209


class RegistrationState(Enum):
    """States of a registration attempt."""

    IDLE = "idle"
    RATE_LIMITED = "rate_limited"
    SUBMITTING = "submitting"
    POLLING = "polling"
    ASSIGNED = "assigned"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self not in (
            RegistrationState.IDLE,
            RegistrationState.SUBMITTING,
            RegistrationState.POLLING,
        )


@dataclass
class RegistrationResult:
    """Outcome of a successful registration."""

    device_id: str
    assigned_hub: str
    operation_id: str
    polls: int
    state: RegistrationState = RegistrationState.ASSIGNED


class ProvisioningClient:
    """Registers devices and waits for hub assignment.

    HTTP goes through an ``httpx.Client``; pass ``transport`` to route
    requests elsewhere (``httpx.MockTransport`` in tests). ``sleep`` and
    ``monotonic`` drive the polling delay and the optional deadline.

    One client may register several devices at once; the state of the
    latest attempt is tracked per device (see ``state``).
    """

    def __init__(
        self,
        cache: CredentialCache,
        config: Optional[RegistrationConfig] = None,
        signer: Optional[TokenSigner] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize provisioning client.

        Args:
            cache: Shared credential cache holding attempt timestamps
            config: Endpoint and polling policy
            signer: SAS token signer (defaults to one using ``config.sas_ttl``)
            transport: Optional httpx transport
            sleep: Function used for the delay before each status query
            monotonic: Clock used for deadlines
        """
        self.cache = cache
        self.config = config or RegistrationConfig()
        self.signer = signer or TokenSigner(ttl=self.config.sas_ttl, clock=cache.clock)
        self.sleep = sleep
        self.monotonic = monotonic
        self._states: Dict[str, RegistrationState] = {}
        self._http = httpx.Client(
            base_url=f"https://{self.config.provisioning_host}",
            timeout=self.config.request_timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "ProvisioningClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def state(self, device_id: str) -> RegistrationState:
        """Return the state of the latest registration attempt for a device."""
        return self._states.get(device_id, RegistrationState.IDLE)

    def _transition(self, device_id: str, state: RegistrationState) -> None:
        logger.debug(
            "Registration of %s: %s -> %s", device_id, self.state(device_id).value, state.value
        )
        self._states[device_id] = state

    def register(
        self,
        identity: DeviceIdentity,
        key: str,
        deadline: Optional[float] = None,
    ) -> RegistrationResult:
        """Register a device and wait for its hub assignment.

        Args:
            identity: Device to register
            key: Base64 derived device key used to sign the request
            deadline: Optional number of seconds after which polling stops

        Returns:
            RegistrationResult with the assigned hub

        Raises:
            RegistrationThrottled: Previous attempt is too recent; no request is sent
            UnexpectedServerResponse: Unknown response shape or HTTP error status
            DeviceUnassociatedOrBlocked: The service refused the device
            RegistrationAttemptsExhausted: Polling ended without resolution
            RegistrationTransportError: The service could not be reached
        """
        device_id = identity.device_id
        self._states[device_id] = RegistrationState.IDLE
        deadline_at = None if deadline is None else self.monotonic() + deadline

        try:
            self.cache.begin_attempt(device_id)
        except RegistrationThrottled:
            self._transition(device_id, RegistrationState.RATE_LIMITED)
            raise

        authorization = self.signer.sign(identity.registration_path, key)
        headers = {"Authorization": authorization}

        try:
            self._transition(device_id, RegistrationState.SUBMITTING)
            operation_id = self._submit(identity, headers)

            self._transition(device_id, RegistrationState.POLLING)
            result = self._poll(identity, operation_id, headers, deadline_at)
        except RegistrationAttemptsExhausted:
            self._transition(device_id, RegistrationState.TIMED_OUT)
            raise
        except RegistrationError:
            self._transition(device_id, RegistrationState.FAILED)
            raise
        except httpx.HTTPStatusError as e:
            self._transition(device_id, RegistrationState.FAILED)
            raise UnexpectedServerResponse(
                device_id,
                f"HTTP {e.response.status_code} from provisioning service",
                status_code=e.response.status_code,
                payload=_response_payload(e.response),
            ) from e
        except httpx.RequestError as e:
            self._transition(device_id, RegistrationState.FAILED)
            raise RegistrationTransportError(device_id, str(e) or type(e).__name__) from e

        self._transition(device_id, RegistrationState.ASSIGNED)
        logger.info("Device %s assigned to hub %s", device_id, result.assigned_hub)
        return result

    def _submit(self, identity: DeviceIdentity, headers: Dict[str, str]) -> str:
        logger.info("[HTTP] Initiating device registration")
        response, body = self._request_json(
            identity.device_id,
            "PUT",
            f"/{identity.id_scope}/registrations/{identity.device_id}/register",
            headers=headers,
            json={"registrationId": identity.device_id},
        )

        operation_id = body.get("operationId")
        if body.get("status") != STATUS_ASSIGNING or not operation_id:
            raise UnexpectedServerResponse(
                identity.device_id, status_code=response.status_code, payload=body
            )
        return operation_id

    def _poll(
        self,
        identity: DeviceIdentity,
        operation_id: str,
        headers: Dict[str, str],
        deadline_at: Optional[float],
    ) -> RegistrationResult:
        device_id = identity.device_id
        path = f"/{identity.id_scope}/registrations/{device_id}/operations/{operation_id}"
        interval = self.config.status_query_interval

        polls = 0
        while polls < self.config.status_query_attempts:
            if deadline_at is not None and self.monotonic() + interval > deadline_at:
                raise RegistrationAttemptsExhausted(device_id, polls, deadline_exceeded=True)

            self.sleep(interval)
            polls += 1

            logger.info("[HTTP] Querying device registration status")
            response, body = self._request_json(device_id, "GET", path, headers=headers)

            status = body.get("status")
            registration_state = body.get("registrationState")
            if not isinstance(registration_state, dict):
                registration_state = {}

            if status == STATUS_ASSIGNING:
                continue
            elif status == STATUS_ASSIGNED and registration_state.get("assignedHub"):
                return RegistrationResult(
                    device_id=device_id,
                    assigned_hub=registration_state["assignedHub"],
                    operation_id=operation_id,
                    polls=polls,
                )
            elif (
                status == STATUS_FAILED
                and registration_state.get("errorCode") == ERROR_DEVICE_BLOCKED
            ):
                raise DeviceUnassociatedOrBlocked(
                    device_id,
                    ERROR_DEVICE_BLOCKED,
                    status_code=response.status_code,
                    payload=body,
                )
            else:
                raise UnexpectedServerResponse(
                    device_id, status_code=response.status_code, payload=body
                )

        raise RegistrationAttemptsExhausted(device_id, polls)

    def _request_json(
        self, device_id: str, method: str, path: str, **kwargs: Any
    ) -> Tuple[httpx.Response, Dict[str, Any]]:
        response = self._http.request(
            method, path, params={"api-version": self.config.api_version}, **kwargs
        )
        response.raise_for_status()

        try:
            body = response.json()
        except ValueError as e:
            raise UnexpectedServerResponse(
                device_id, status_code=response.status_code, payload=response.text
            ) from e
        if not isinstance(body, dict):
            raise UnexpectedServerResponse(
                device_id, status_code=response.status_code, payload=body
            )
        return response, body


def _response_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
