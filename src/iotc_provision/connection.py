"""Connection credential factory, the entry point for device bootstrap code."""

import logging
from typing import Optional

import httpx

from .cache import CredentialCache
from .config import ProvisioningSettings
from .identity import ConnectionCredential
from .keys import KeyDeriver, TokenSigner
from .registration import ProvisioningClient

logger = logging.getLogger(__name__)


class ConnectionStringFactory:
    """Produces connection credentials, provisioning devices on first use.

    A credential obtained once is served from the cache afterwards without
    any network activity. Concurrent calls for the same device are
    serialized; the second caller receives the credential cached by the
    first.
    """

    def __init__(
        self,
        settings: ProvisioningSettings,
        cache: CredentialCache,
        deriver: KeyDeriver,
        client: ProvisioningClient,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.deriver = deriver
        self.client = client

    @classmethod
    def from_settings(
        cls,
        settings: ProvisioningSettings,
        cache: Optional[CredentialCache] = None,
        transport: Optional[httpx.BaseTransport] = None,
        **client_options,
    ) -> "ConnectionStringFactory":
        """Build a factory and its collaborators from settings.

        Args:
            settings: Provisioning settings; id_scope and group_key are required
            cache: Cache to share (a new one is created otherwise)
            transport: Optional httpx transport for the provisioning client
            client_options: Extra ProvisioningClient arguments (sleep, monotonic)

        Raises:
            ConfigurationMissing: If id_scope or group_key is missing
        """
        settings.require("id_scope", "group_key")
        registration = settings.registration
        if cache is None:
            cache = CredentialCache(
                min_registration_interval=registration.min_registration_interval
            )
        signer = TokenSigner(ttl=registration.sas_ttl, clock=cache.clock)
        client = ProvisioningClient(
            cache, config=registration, signer=signer, transport=transport, **client_options
        )
        return cls(settings, cache, KeyDeriver(settings.group_key, cache), client)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "ConnectionStringFactory":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def get_connection_string(
        self,
        device_id: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> ConnectionCredential:
        """Return the connection credential for a device.

        Args:
            device_id: Device to connect (defaults to the configured device)
            deadline: Optional polling deadline in seconds for a registration

        Returns:
            ConnectionCredential for the assigned hub

        Raises:
            ConfigurationMissing: Scope, group key or device id is missing
            InvalidKeyFormat: The group key is not valid base64
            RegistrationError: Registration failed (see ProvisioningClient.register)
        """
        identity = self.settings.identity(device_id)

        with self.cache.device_lock(identity.device_id):
            cached = self.cache.get(identity.device_id).credential
            if cached is not None:
                return cached

            key = self.deriver.derive(identity.device_id)
            result = self.client.register(identity, key, deadline=deadline)

            # The provisioning key doubles as the device's shared access key
            credential = ConnectionCredential(
                host_name=result.assigned_hub,
                device_id=identity.device_id,
                shared_access_key=key,
            )
            self.cache.set_credential(identity.device_id, credential)
            logger.info("Connection credential ready for %s", identity.device_id)
            return credential
