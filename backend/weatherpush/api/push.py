"""
Web Push subscription management.

GET  /push/vapid-public-key  — return the VAPID public key for frontend subscription
POST /push/subscribe          — upsert a push subscription
POST /push/unsubscribe        — remove a push subscription (idempotent)
POST /push/test-summary       — broadcast the summary notification now
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends

from weatherpush.api.deps import get_coordinator, get_signer, get_store
from weatherpush.config import settings
from weatherpush.push.coordinator import DeliveryCoordinator
from weatherpush.push.dispatcher import short_endpoint
from weatherpush.push.errors import PushError, ValidationError
from weatherpush.push.messages import WELCOME_MESSAGE, summary_message
from weatherpush.push.records import Subscription
from weatherpush.push.store import SubscriptionStore
from weatherpush.push.vapid import VapidSigner
from weatherpush.schemas.push import (
    ApiResponse,
    BroadcastResponse,
    SubscribeRequest,
    UnsubscribeRequest,
    VapidPublicKeyResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/push", tags=["push"])


async def _send_welcome(coordinator: DeliveryCoordinator, subscription: Subscription) -> None:
    try:
        result = await coordinator.send_to(subscription, WELCOME_MESSAGE)
    except PushError as exc:
        logger.warning("Welcome push to %s failed: %s", short_endpoint(subscription.endpoint), exc)
        return
    if result is not None:
        logger.info("Welcome push to %s: %s", short_endpoint(subscription.endpoint), result.outcome.value)


@router.get("/vapid-public-key", response_model=VapidPublicKeyResponse)
async def get_vapid_public_key(signer: VapidSigner | None = Depends(get_signer)) -> VapidPublicKeyResponse:
    """Return the VAPID public key so the frontend can subscribe."""
    return VapidPublicKeyResponse(key=signer.public_key_b64 if signer else "")


@router.post("/subscribe", response_model=ApiResponse)
async def subscribe(
    data: SubscribeRequest,
    background_tasks: BackgroundTasks,
    store: SubscriptionStore = Depends(get_store),
    coordinator: DeliveryCoordinator | None = Depends(get_coordinator),
) -> ApiResponse:
    """Upsert a browser push subscription, keyed by endpoint."""
    subscription = store.put(Subscription(endpoint=data.endpoint, p256dh=data.p256dh, auth=data.auth))
    logger.info("Subscription added: %s", short_endpoint(subscription.endpoint))
    if coordinator is not None and settings.PUSH_SEND_WELCOME:
        background_tasks.add_task(_send_welcome, coordinator, subscription)
    return ApiResponse(ok=True)


@router.post("/unsubscribe", response_model=ApiResponse)
async def unsubscribe(
    data: UnsubscribeRequest,
    store: SubscriptionStore = Depends(get_store),
) -> ApiResponse:
    """Remove a push subscription. Succeeds whether or not it existed."""
    endpoint = data.endpoint.strip()
    if not endpoint:
        raise ValidationError("endpoint is required")
    if store.remove(endpoint):
        logger.info("Subscription removed: %s", short_endpoint(endpoint))
    return ApiResponse(ok=True)


@router.post("/test-summary", response_model=BroadcastResponse)
async def test_summary(
    store: SubscriptionStore = Depends(get_store),
    coordinator: DeliveryCoordinator | None = Depends(get_coordinator),
) -> BroadcastResponse:
    """Broadcast the summary notification immediately.

    ``ok`` is true when at least one subscriber got it, or when there is nobody to send to.
    """
    if coordinator is None:
        total = len(store.list_all())
        if total == 0:
            return BroadcastResponse(ok=True)
        return BroadcastResponse(ok=False, total=total, error="Push notifications are not configured")

    report = await coordinator.broadcast(summary_message())
    return BroadcastResponse(**report.summary())
