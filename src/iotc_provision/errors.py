"""Error types raised by the provisioning subsystem."""

from typing import Any, List, Optional


class ProvisioningError(RuntimeError):
    """Base class for all provisioning failures."""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        device_id: Optional[str] = None,
        status_code: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.device_id = device_id
        self.status_code = status_code
        self.payload = payload


class ConfigurationMissing(ProvisioningError):
    """Required configuration values are absent or empty."""

    def __init__(self, missing: List[str]) -> None:
        super().__init__(f"Missing required configuration: {', '.join(missing)}")
        self.missing = list(missing)


class InvalidKeyFormat(ProvisioningError):
    """A symmetric key is not valid base64."""


class RegistrationError(ProvisioningError):
    """A registration attempt for a device failed.

    The message always reads ``Unable to register device <id>: <cause>``.
    """

    def __init__(
        self,
        device_id: str,
        cause: str,
        *,
        status_code: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        super().__init__(
            f"Unable to register device {device_id}: {cause}",
            device_id=device_id,
            status_code=status_code,
            payload=payload,
        )
        self.cause = cause


class RegistrationThrottled(RegistrationError):
    """The minimum interval between registration attempts has not elapsed."""

    retryable = True

    def __init__(self, device_id: str, retry_after: int) -> None:
        super().__init__(
            device_id,
            "Minimum registration timeout not yet exceeded. "
            f"Please try again in {retry_after} seconds",
        )
        self.retry_after = retry_after


class UnexpectedServerResponse(RegistrationError):
    """The provisioning service answered with an unknown or error response."""

    def __init__(
        self,
        device_id: str,
        cause: str = "Unknown server response",
        *,
        status_code: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        super().__init__(device_id, cause, status_code=status_code, payload=payload)


class DeviceUnassociatedOrBlocked(RegistrationError):
    """The service refused the device (error code 400209)."""

    def __init__(
        self,
        device_id: str,
        error_code: int,
        *,
        status_code: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        super().__init__(
            device_id,
            "The device may be unassociated or blocked",
            status_code=status_code,
            payload=payload,
        )
        self.error_code = error_code


class RegistrationAttemptsExhausted(RegistrationError):
    """Polling ended without the operation being resolved."""

    retryable = True

    def __init__(self, device_id: str, attempts: int, deadline_exceeded: bool = False) -> None:
        if deadline_exceeded:
            cause = f"Registration deadline exceeded after {attempts} status queries"
        else:
            cause = "Registration was not successful after maximum number of attempts"
        super().__init__(device_id, cause)
        self.attempts = attempts
        self.deadline_exceeded = deadline_exceeded


class RegistrationTransportError(RegistrationError):
    """The provisioning service could not be reached."""

    retryable = True
