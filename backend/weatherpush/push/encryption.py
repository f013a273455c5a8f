"""
Web Push payload encryption (RFC 8291, ``aes128gcm`` content coding from RFC 8188).

Every call generates a fresh ephemeral key pair and salt, so two encryptions of
the same plaintext for the same subscriber never share key material.

Output layout (single record):
  salt (16) | rs (4, big-endian) | idlen (1) | keyid (65, ephemeral public key) | ciphertext
"""

import base64
import binascii
import os
import re
import struct

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from weatherpush.push.errors import EncryptionError

RECORD_SIZE = 4096
SALT_LENGTH = 16
AUTH_SECRET_LENGTH = 16
PUBLIC_KEY_LENGTH = 65  # uncompressed P-256 point
TAG_LENGTH = 16
# Final record carries one 0x02 delimiter byte before the AEAD tag
RECORD_OVERHEAD = TAG_LENGTH + 1
# salt | rs | idlen | keyid
HEADER_LENGTH = SALT_LENGTH + 4 + 1 + PUBLIC_KEY_LENGTH
# Push services refuse bodies larger than this (RFC 8030 section 7.2)
MAX_BODY_LENGTH = 4096

_B64URL = re.compile(rb"[A-Za-z0-9_-]*={0,2}")

_KEY_INFO = b"WebPush: info\x00"
_CEK_INFO = b"Content-Encoding: aes128gcm\x00"
_NONCE_INFO = b"Content-Encoding: nonce\x00"


def decode_b64url(value: str | bytes) -> bytes:
    """Decode base64url with or without ``=`` padding.

    Raises ValueError for any character outside the base64url alphabet
    instead of silently skipping it.
    """
    if isinstance(value, str):
        value = value.encode("ascii")
    value = value.strip()
    if not _B64URL.fullmatch(value):
        raise ValueError("contains characters outside the base64url alphabet")
    value += b"=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value)


def encode_b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def max_plaintext_length(record_size: int = RECORD_SIZE) -> int:
    """Largest plaintext whose whole encrypted body, header included, a push service will accept."""
    return min(record_size, MAX_BODY_LENGTH - HEADER_LENGTH) - RECORD_OVERHEAD


def load_subscriber_key(p256dh: str | bytes) -> ec.EllipticCurvePublicKey:
    """Parse the browser's ``p256dh`` key, raising EncryptionError if it is not a P-256 point."""
    try:
        raw = decode_b64url(p256dh) if isinstance(p256dh, str) else p256dh
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise EncryptionError(f"p256dh is not valid base64url: {exc}") from exc
    if len(raw) != PUBLIC_KEY_LENGTH or raw[0] != 0x04:
        raise EncryptionError(f"p256dh must be a {PUBLIC_KEY_LENGTH}-byte uncompressed point, got {len(raw)} bytes")
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), raw)
    except ValueError as exc:
        raise EncryptionError("p256dh is not a point on P-256") from exc


def load_auth_secret(auth: str | bytes) -> bytes:
    try:
        raw = decode_b64url(auth) if isinstance(auth, str) else auth
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise EncryptionError(f"auth is not valid base64url: {exc}") from exc
    if len(raw) != AUTH_SECRET_LENGTH:
        raise EncryptionError(f"auth secret must be {AUTH_SECRET_LENGTH} bytes, got {len(raw)}")
    return raw


def _hkdf(salt: bytes, ikm: bytes, info: bytes, length: int) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=info).derive(ikm)


def _public_bytes(key: ec.EllipticCurvePublicKey) -> bytes:
    return key.public_bytes(serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint)


def encrypt(
    plaintext: bytes,
    p256dh: str | bytes,
    auth: str | bytes,
    *,
    record_size: int = RECORD_SIZE,
) -> bytes:
    """Encrypt *plaintext* for one subscriber and return the full ``aes128gcm`` body.

    *p256dh* and *auth* are accepted either as the base64url strings the
    browser hands out or as raw bytes.

    Raises:
        EncryptionError: malformed subscriber keys, or plaintext too large for one push message.
    """
    limit = max_plaintext_length(record_size)
    if len(plaintext) > limit:
        raise EncryptionError(f"payload is {len(plaintext)} bytes; at most {limit} fit in one push message")

    ua_public = load_subscriber_key(p256dh)
    auth_secret = load_auth_secret(auth)

    ephemeral = ec.generate_private_key(ec.SECP256R1())
    try:
        shared_secret = ephemeral.exchange(ec.ECDH(), ua_public)
    except (ValueError, InvalidKey) as exc:
        raise EncryptionError(f"key agreement failed: {exc}") from exc

    ua_bytes = _public_bytes(ua_public)
    as_bytes = _public_bytes(ephemeral.public_key())

    ikm = _hkdf(auth_secret, shared_secret, _KEY_INFO + ua_bytes + as_bytes, 32)
    salt = os.urandom(SALT_LENGTH)
    cek = _hkdf(salt, ikm, _CEK_INFO, 16)
    nonce = _hkdf(salt, ikm, _NONCE_INFO, 12)

    ciphertext = AESGCM(cek).encrypt(nonce, plaintext + b"\x02", None)

    header = salt + struct.pack("!IB", record_size, len(as_bytes)) + as_bytes
    return header + ciphertext
