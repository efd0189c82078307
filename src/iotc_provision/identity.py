"""Device identity and connection credential types."""

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class DeviceIdentity:
    """Identifies a device within a provisioning scope."""

    device_id: str
    id_scope: str

    @property
    def registration_path(self) -> str:
        """Resource path used to sign registration requests."""
        return f"{self.id_scope}/registrations/{self.device_id}"


@dataclass(frozen=True)
class ConnectionCredential:
    """Credential used to open a device session against the assigned hub."""

    host_name: str
    device_id: str
    shared_access_key: str

    def to_string(self) -> str:
        """Serialize to the ``HostName=...;DeviceId=...;SharedAccessKey=...`` form."""
        return (
            f"HostName={self.host_name};"
            f"DeviceId={self.device_id};"
            f"SharedAccessKey={self.shared_access_key}"
        )

    def __str__(self) -> str:
        return self.to_string()

    def to_dict(self) -> Dict[str, str]:
        """Return the credential as a plain dictionary."""
        return {
            "host_name": self.host_name,
            "device_id": self.device_id,
            "shared_access_key": self.shared_access_key,
        }

    @classmethod
    def parse(cls, value: str) -> "ConnectionCredential":
        """Parse a connection string.

        Args:
            value: String in ``HostName=<h>;DeviceId=<id>;SharedAccessKey=<k>`` form

        Returns:
            ConnectionCredential object
        """
        fields: Dict[str, str] = {}
        for part in value.strip().split(";"):
            if not part:
                continue
            # Keys may end in "=" padding, so split on the first one only
            name, sep, field_value = part.partition("=")
            if not sep:
                raise ValueError(f"Malformed connection string segment: {part!r}")
            fields[name] = field_value

        missing = [k for k in ("HostName", "DeviceId", "SharedAccessKey") if not fields.get(k)]
        if missing:
            raise ValueError(f"Connection string missing {', '.join(missing)}")

        return cls(
            host_name=fields["HostName"],
            device_id=fields["DeviceId"],
            shared_access_key=fields["SharedAccessKey"],
        )
