"""
VAPID (RFC 8292) application server identification.

Tokens are scoped to one push service origin. Mozilla autopush, FCM and
WNS all reject a JWT whose ``aud`` does not match the endpoint it is sent
to, so a token is signed per audience rather than once per broadcast.
"""

import binascii
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import NamedTuple
from urllib.parse import urlsplit

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jose import jwt

from weatherpush.push.encryption import decode_b64url, encode_b64url
from weatherpush.push.errors import VapidKeyError

MAX_TOKEN_LIFETIME = timedelta(hours=24)


class VapidToken(NamedTuple):
    jwt: str
    public_key_b64: str


@dataclass(frozen=True)
class VapidKeys:
    """Immutable application server key pair.

    Built once from configuration and handed to the signer; nothing looks keys
    up on its own.
    """

    private_pem: str
    public_key_b64: str  # uncompressed point, base64url, the browser's applicationServerKey

    @classmethod
    def from_private_key(cls, private_key: ec.EllipticCurvePrivateKey) -> "VapidKeys":
        if not isinstance(private_key.curve, ec.SECP256R1):
            raise VapidKeyError("VAPID keys must be on the P-256 curve")
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("ascii")
        public_bytes = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.UncompressedPoint,
        )
        return cls(private_pem=private_pem, public_key_b64=encode_b64url(public_bytes))

    @classmethod
    def from_config(cls, private_key: str, public_key: str = "") -> "VapidKeys":
        """Build from the ``VAPID_PRIVATE_KEY`` / ``VAPID_PUBLIC_KEY`` settings.

        *private_key* is either the raw 32-byte scalar in base64url (what
        ``generate_vapid_keys`` and ``npx web-push generate-vapid-keys`` print)
        or a PEM block. If *public_key* is given it must match the derived one.
        """
        private_key = private_key.strip()
        if not private_key:
            raise VapidKeyError("VAPID_PRIVATE_KEY is not set")
        if private_key.startswith("-----BEGIN"):
            try:
                loaded = serialization.load_pem_private_key(private_key.encode(), password=None)
            except ValueError as exc:
                raise VapidKeyError(f"VAPID_PRIVATE_KEY is not a valid PEM key: {exc}") from exc
            if not isinstance(loaded, ec.EllipticCurvePrivateKey):
                raise VapidKeyError("VAPID_PRIVATE_KEY must be an EC key")
        else:
            try:
                raw = decode_b64url(private_key)
            except (binascii.Error, ValueError) as exc:
                raise VapidKeyError(f"VAPID_PRIVATE_KEY is not valid base64url: {exc}") from exc
            if len(raw) != 32:
                raise VapidKeyError(f"VAPID_PRIVATE_KEY must decode to 32 bytes, got {len(raw)}")
            try:
                loaded = ec.derive_private_key(int.from_bytes(raw, "big"), ec.SECP256R1())
            except ValueError as exc:
                raise VapidKeyError(f"VAPID_PRIVATE_KEY is out of range: {exc}") from exc

        keys = cls.from_private_key(loaded)
        if public_key and public_key.strip().rstrip("=") != keys.public_key_b64:
            raise VapidKeyError("VAPID_PUBLIC_KEY does not match VAPID_PRIVATE_KEY")
        return keys


def generate_vapid_keys() -> dict:
    """Generate a new P-256 key pair, encoded the way ``VapidKeys.from_config`` expects."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    private_bytes = private_key.private_numbers().private_value.to_bytes(32, byteorder="big")
    return {
        "public_key": VapidKeys.from_private_key(private_key).public_key_b64,
        "private_key": encode_b64url(private_bytes),
    }


def audience_for(endpoint: str) -> str:
    """Return the push service origin (``scheme://host[:port]``) for a subscription endpoint."""
    parts = urlsplit(endpoint)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ValueError(f"Not a push endpoint URL: {endpoint!r}")
    origin = f"{parts.scheme}://{parts.hostname}"
    if parts.port is not None:
        origin = f"{origin}:{parts.port}"
    return origin


def authorization_header(token: VapidToken) -> str:
    return f"vapid t={token.jwt}, k={token.public_key_b64}"


class VapidSigner:
    """Signs per-audience VAPID JWTs with a fixed key pair. No I/O, no mutable state."""

    def __init__(self, keys: VapidKeys, subject: str, lifetime: timedelta = timedelta(hours=12)):
        if not (subject.startswith("mailto:") or subject.startswith("https:")):
            raise VapidKeyError(f"VAPID subject must be a mailto: or https: URI, got {subject!r}")
        if lifetime <= timedelta(0) or lifetime > MAX_TOKEN_LIFETIME:
            raise VapidKeyError("VAPID token lifetime must be positive and at most 24 hours")
        self._keys = keys
        self._subject = subject
        self._lifetime = lifetime

    @property
    def public_key_b64(self) -> str:
        return self._keys.public_key_b64

    def sign(self, audience: str, now: datetime | None = None) -> VapidToken:
        if now is None:
            now = datetime.now(timezone.utc)
        claims = {
            "aud": audience,
            "exp": int((now + self._lifetime).timestamp()),
            "sub": self._subject,
        }
        token = jwt.encode(claims, self._keys.private_pem, algorithm="ES256")
        return VapidToken(jwt=token, public_key_b64=self._keys.public_key_b64)

    def sign_for_endpoint(self, endpoint: str, now: datetime | None = None) -> VapidToken:
        return self.sign(audience_for(endpoint), now)
