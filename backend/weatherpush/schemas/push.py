from urllib.parse import urlsplit

from pydantic import BaseModel, field_validator

from weatherpush.push.encryption import load_auth_secret, load_subscriber_key
from weatherpush.push.errors import EncryptionError


class SubscribeRequest(BaseModel):
    endpoint: str
    p256dh: str
    auth: str

    @field_validator("endpoint")
    @classmethod
    def endpoint_is_url(cls, v: str) -> str:
        v = v.strip()
        if any(ch <= " " or ch == "\x7f" for ch in v):
            raise ValueError("endpoint must not contain whitespace or control characters")
        parts = urlsplit(v)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError("endpoint must be an http(s) URL")
        if len(v) > 1000:
            raise ValueError("endpoint is too long")
        return v

    @field_validator("p256dh")
    @classmethod
    def p256dh_is_point(cls, v: str) -> str:
        v = v.strip()
        try:
            load_subscriber_key(v)
        except EncryptionError as exc:
            raise ValueError(str(exc)) from exc
        return v

    @field_validator("auth")
    @classmethod
    def auth_is_secret(cls, v: str) -> str:
        v = v.strip()
        try:
            load_auth_secret(v)
        except EncryptionError as exc:
            raise ValueError(str(exc)) from exc
        return v


class UnsubscribeRequest(BaseModel):
    endpoint: str


class ApiResponse(BaseModel):
    ok: bool
    error: str | None = None


class BroadcastResponse(ApiResponse):
    total: int = 0
    delivered: int = 0
    transient: int = 0
    gone: int = 0
    rejected: int = 0
    skipped: int = 0
    pruned: int = 0


class VapidPublicKeyResponse(BaseModel):
    key: str
