"""Configuration management for device provisioning."""

import json
import os
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import BaseModel

from .errors import ConfigurationMissing
from .identity import DeviceIdentity

# Environment variable names read by load_settings_from_env
ENV_ID_SCOPE = "ID_SCOPE"
ENV_GROUP_KEY = "IOTC_SAS_KEY"
ENV_DEVICE_ID = "DEVICE_ID"
ENV_PROVISIONING_HOST = "PROVISIONING_HOST"


class RegistrationConfig(BaseModel):
    """Provisioning service endpoint and polling policy."""

    provisioning_host: str = "global.azure-devices-provisioning.net"
    api_version: str = "2018-11-01"
    sas_ttl: int = 3600
    status_query_attempts: int = 10
    status_query_interval: float = 2.0  # seconds, slept before every status query
    min_registration_interval: float = 60.0
    request_timeout: float = 15.0


class ProvisioningSettings(BaseModel):
    """Complete provisioning configuration."""

    id_scope: Optional[str] = None
    group_key: Optional[str] = None
    device_id: Optional[str] = None
    registration: RegistrationConfig = RegistrationConfig()

    def require(self, *fields: str) -> None:
        """Fail if any of the named settings is missing or blank.

        Args:
            fields: Setting names to check (defaults to id_scope, group_key, device_id)

        Raises:
            ConfigurationMissing: Listing the environment variable of each missing value
        """
        env_names = {
            "id_scope": ENV_ID_SCOPE,
            "group_key": ENV_GROUP_KEY,
            "device_id": ENV_DEVICE_ID,
        }
        missing = [
            env_names.get(name, name)
            for name in (fields or ("id_scope", "group_key", "device_id"))
            if not (getattr(self, name) or "").strip()
        ]
        if missing:
            raise ConfigurationMissing(missing)

    def identity(self, device_id: Optional[str] = None) -> DeviceIdentity:
        """Build the device identity, optionally for another device in the scope."""
        self.require("id_scope")
        device_id = device_id or self.device_id
        if not (device_id or "").strip():
            raise ConfigurationMissing([ENV_DEVICE_ID])
        return DeviceIdentity(device_id=device_id, id_scope=self.id_scope)

    def merged_with(self, other: "ProvisioningSettings") -> "ProvisioningSettings":
        """Return a copy where unset fields are filled from ``other``.

        Covers the identity fields and the provisioning host; the host is
        taken from ``other`` only when this copy never set it explicitly.
        """
        update = {
            name: getattr(other, name)
            for name in ("id_scope", "group_key", "device_id")
            if not getattr(self, name) and getattr(other, name)
        }
        if (
            "provisioning_host" not in self.registration.model_fields_set
            and "provisioning_host" in other.registration.model_fields_set
        ):
            update["registration"] = self.registration.model_copy(
                update={"provisioning_host": other.registration.provisioning_host}
            )
        return self.model_copy(update=update)


def load_settings_from_env(environ: Optional[Mapping[str, str]] = None) -> ProvisioningSettings:
    """Read provisioning settings from environment variables.

    Args:
        environ: Mapping to read from (defaults to ``os.environ``)

    Returns:
        ProvisioningSettings object (values may be missing; see ``require``)
    """
    if environ is None:
        environ = os.environ

    registration = RegistrationConfig()
    host = environ.get(ENV_PROVISIONING_HOST, "").strip()
    if host:
        registration = RegistrationConfig(provisioning_host=host)

    return ProvisioningSettings(
        id_scope=environ.get(ENV_ID_SCOPE) or None,
        group_key=environ.get(ENV_GROUP_KEY) or None,
        device_id=environ.get(ENV_DEVICE_ID) or None,
        registration=registration,
    )


def load_config(config_path: Path) -> ProvisioningSettings:
    """Load configuration from file.

    Supports YAML and JSON formats.

    Args:
        config_path: Path to configuration file

    Returns:
        ProvisioningSettings object
    """
    with open(config_path) as f:
        if config_path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        elif config_path.suffix == ".json":
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config format: {config_path.suffix}")

    return ProvisioningSettings(**(data or {}))


def save_config(settings: ProvisioningSettings, config_path: Path) -> None:
    """Save configuration to file.

    The group key is never written out.

    Args:
        settings: Configuration to save
        config_path: Output path
    """
    data = settings.model_dump(exclude={"group_key"})

    with open(config_path, "w") as f:
        if config_path.suffix in (".yaml", ".yml"):
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        elif config_path.suffix == ".json":
            json.dump(data, f, indent=2)
        else:
            raise ValueError(f"Unsupported config format: {config_path.suffix}")


def generate_default_config(format: str = "yaml") -> str:
    """Generate default configuration content.

    Args:
        format: Output format ("yaml" or "json")

    Returns:
        Configuration file content as string
    """
    data = ProvisioningSettings().model_dump(exclude={"group_key"})

    if format == "yaml":
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    elif format == "json":
        return json.dumps(data, indent=2)
    else:
        raise ValueError(f"Unsupported format: {format}")
