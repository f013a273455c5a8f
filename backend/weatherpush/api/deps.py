from fastapi import Request

from weatherpush.push.coordinator import DeliveryCoordinator
from weatherpush.push.store import SubscriptionStore
from weatherpush.push.vapid import VapidSigner


def get_store(request: Request) -> SubscriptionStore:
    return request.app.state.store


def get_coordinator(request: Request) -> DeliveryCoordinator | None:
    """The live coordinator, or None when VAPID keys are not configured."""
    return getattr(request.app.state, "coordinator", None)


def get_signer(request: Request) -> VapidSigner | None:
    return getattr(request.app.state, "signer", None)
