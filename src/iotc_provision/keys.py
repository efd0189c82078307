"""Symmetric key derivation and SAS token signing.

Device keys are derived from a group enrollment key:

    device_key = base64(HMAC-SHA256(base64decode(group_key), utf8(device_id)))

Registration requests are authorized with a Shared Access Signature:

    SharedAccessSignature sr=<uri>&sig=<sig>&skn=registration&se=<expiry>

where ``sig`` is base64(HMAC-SHA256(base64decode(device_key), "<uri>\\n<expiry>")).
"""

import base64
import binascii
import time
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import quote, unquote

from Crypto.Hash import HMAC, SHA256

from .cache import CredentialCache
from .errors import InvalidKeyFormat

SAS_PREFIX = "SharedAccessSignature "
REGISTRATION_KEY_NAME = "registration"
DEFAULT_SAS_TTL = 3600

# Characters left alone by JavaScript's encodeURIComponent
_URI_SAFE = "-_.!~*'()"


def url_encode(value: str) -> str:
    """Percent-encode a URI component (``/`` included)."""
    return quote(value, safe=_URI_SAFE)


def decode_key(key: str) -> bytes:
    """Decode a base64 symmetric key.

    Raises:
        InvalidKeyFormat: If the key is empty or not valid base64
    """
    if not key:
        raise InvalidKeyFormat("Symmetric key is empty")
    try:
        return base64.b64decode(key, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidKeyFormat(f"Symmetric key is not valid base64: {e}") from e


def _hmac_sha256(key: bytes, message: bytes) -> bytes:
    return HMAC.new(key, msg=message, digestmod=SHA256).digest()


def derive_device_key(group_key: str, device_id: str) -> str:
    """Derive a device key from a group key.

    Args:
        group_key: Base64 group enrollment key
        device_id: Device (registration) identifier

    Returns:
        Base64 device key
    """
    digest = _hmac_sha256(decode_key(group_key), device_id.encode("utf-8"))
    return base64.b64encode(digest).decode("ascii")


class KeyDeriver:
    """Derives device keys, computing each one at most once per cache."""

    def __init__(self, group_key: str, cache: CredentialCache) -> None:
        self.group_key = group_key
        self.cache = cache

    def derive(self, device_id: str) -> str:
        """Return the derived key for a device, from cache when available."""
        cached = self.cache.get(device_id).derived_key
        if cached is not None:
            return cached

        key = derive_device_key(self.group_key, device_id)
        self.cache.set_derived_key(device_id, key)
        return key


@dataclass(frozen=True)
class SasToken:
    """Shared Access Signature for a resource."""

    resource_uri: str
    signature: str
    expiry: int
    key_name: str = REGISTRATION_KEY_NAME

    def to_string(self) -> str:
        """Render the token as an ``Authorization`` header value."""
        return (
            f"{SAS_PREFIX}sr={self.resource_uri}"
            f"&sig={url_encode(self.signature)}"
            f"&skn={self.key_name}"
            f"&se={self.expiry}"
        )

    def __str__(self) -> str:
        return self.to_string()

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check whether the token has passed its expiry."""
        return (time.time() if now is None else now) >= self.expiry

    def verify(self, key: str) -> bool:
        """Recompute the signature with a key and compare."""
        mac = HMAC.new(
            decode_key(key), msg=_signed_message(self.resource_uri, self.expiry), digestmod=SHA256
        )
        try:
            mac.verify(base64.b64decode(self.signature))
        except (binascii.Error, ValueError):
            return False
        return True

    @classmethod
    def parse(cls, value: str) -> "SasToken":
        """Parse a rendered token.

        Args:
            value: Token string beginning with ``SharedAccessSignature``

        Returns:
            SasToken object (``resource_uri`` stays percent-encoded)
        """
        if not value.startswith(SAS_PREFIX):
            raise ValueError("Not a SharedAccessSignature token")

        fields = {}
        for part in value[len(SAS_PREFIX):].split("&"):
            name, sep, field_value = part.partition("=")
            if not sep:
                raise ValueError(f"Malformed token segment: {part!r}")
            fields[name] = field_value

        try:
            signature = unquote(fields["sig"])
            return cls(
                resource_uri=fields["sr"],
                signature=signature,
                expiry=int(fields["se"]),
                key_name=fields.get("skn", REGISTRATION_KEY_NAME),
            )
        except KeyError as e:
            raise ValueError(f"Token missing field: {e}") from e


def _signed_message(resource_uri: str, expiry: int) -> bytes:
    return f"{resource_uri}\n{expiry}".encode("utf-8")


def _sign(resource_uri: str, expiry: int, key: bytes) -> str:
    digest = _hmac_sha256(key, _signed_message(resource_uri, expiry))
    return base64.b64encode(digest).decode("ascii")


def generate_sas_token(
    resource_path: str,
    key: str,
    ttl: int = DEFAULT_SAS_TTL,
    now: Optional[float] = None,
    key_name: str = REGISTRATION_KEY_NAME,
) -> SasToken:
    """Build a SAS token for a resource.

    Args:
        resource_path: Unencoded resource path, e.g. ``<scope>/registrations/<id>``
        key: Base64 signing key (the derived device key)
        ttl: Lifetime in seconds
        now: Current epoch seconds (defaults to ``time.time()``)
        key_name: Value of the ``skn`` field

    Returns:
        Signed SasToken
    """
    resource_uri = url_encode(resource_path)
    expiry = round(time.time() if now is None else now) + ttl
    signature = _sign(resource_uri, expiry, decode_key(key))
    return SasToken(
        resource_uri=resource_uri, signature=signature, expiry=expiry, key_name=key_name
    )


class TokenSigner:
    """Signs registration tokens with a fixed TTL and clock."""

    def __init__(self, ttl: int = DEFAULT_SAS_TTL, clock: Callable[[], float] = time.time) -> None:
        self.ttl = ttl
        self.clock = clock

    def sign(self, resource_path: str, key: str) -> str:
        """Return a rendered SAS token for the resource."""
        return generate_sas_token(resource_path, key, ttl=self.ttl, now=self.clock()).to_string()
