"""
Push delivery error taxonomy.

Delivery outcomes (delivered / transient / gone / rejected) are not exceptions;
see ``weatherpush.push.records.Outcome``. Everything here is raised.
"""


class PushError(Exception):
    """Base class for all push delivery errors."""


class ValidationError(PushError):
    """Malformed subscribe/unsubscribe request. Mapped to HTTP 400, never retried."""


class EncryptionError(PushError):
    """Subscriber key material is unusable or the payload does not fit in one record."""


class StoreError(PushError):
    """The subscription store failed. Aborts the current broadcast."""


class VapidKeyError(PushError):
    """The configured VAPID key pair is missing, malformed or inconsistent."""
