"""IoT Central device provisioning.

This package obtains connection credentials for devices enrolled through a
symmetric-key group, including:
- Device key derivation from the group enrollment key
- SAS token signing for the provisioning service
- Registration and hub assignment polling with a per-device attempt gate
- Cached connection credentials for the device session
"""

__version__ = "0.1.0"
__author__ = "IoT Central Bridge Team"

from .cache import CredentialCache, DeviceRecord
from .config import ProvisioningSettings, RegistrationConfig, load_settings_from_env
from .connection import ConnectionStringFactory
from .errors import (
    ConfigurationMissing,
    DeviceUnassociatedOrBlocked,
    InvalidKeyFormat,
    ProvisioningError,
    RegistrationAttemptsExhausted,
    RegistrationError,
    RegistrationThrottled,
    RegistrationTransportError,
    UnexpectedServerResponse,
)
from .identity import ConnectionCredential, DeviceIdentity
from .keys import KeyDeriver, SasToken, TokenSigner, derive_device_key, generate_sas_token
from .registration import ProvisioningClient, RegistrationResult, RegistrationState

__all__ = [
    "CredentialCache",
    "DeviceRecord",
    "ProvisioningSettings",
    "RegistrationConfig",
    "load_settings_from_env",
    "ConnectionStringFactory",
    "ConfigurationMissing",
    "DeviceUnassociatedOrBlocked",
    "InvalidKeyFormat",
    "ProvisioningError",
    "RegistrationAttemptsExhausted",
    "RegistrationError",
    "RegistrationThrottled",
    "RegistrationTransportError",
    "UnexpectedServerResponse",
    "ConnectionCredential",
    "DeviceIdentity",
    "KeyDeriver",
    "SasToken",
    "TokenSigner",
    "derive_device_key",
    "generate_sas_token",
    "ProvisioningClient",
    "RegistrationResult",
    "RegistrationState",
]
