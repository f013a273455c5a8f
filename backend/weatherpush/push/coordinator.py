"""
Delivery coordinator: fans one notification out to every subscription.

Each recipient runs encrypt -> sign -> dispatch -> record independently, at
most ``max_concurrency`` at a time, under one overall deadline. Nothing is
retried inside a broadcast: transient failures wait for the next trigger.

A recipient's encryption failure is logged and skipped; any other error while
signing or sending counts as a transient failure for that recipient only.
A store failure aborts the whole broadcast, because outcomes we cannot record
would leave the health counters wrong.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from weatherpush.push.dispatcher import Dispatcher, short_endpoint
from weatherpush.push.encryption import encrypt
from weatherpush.push.errors import EncryptionError
from weatherpush.push.messages import NotificationMessage
from weatherpush.push.records import DeliveryResult, Outcome, Subscription
from weatherpush.push.store import StoreAction, SubscriptionStore
from weatherpush.push.vapid import VapidSigner, VapidToken, audience_for

logger = logging.getLogger(__name__)


@dataclass
class BroadcastReport:
    total: int = 0
    delivered: int = 0
    transient: int = 0
    gone: int = 0
    rejected: int = 0
    skipped: int = 0
    pruned: int = 0
    results: list[DeliveryResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True if anyone got the message, or there was nobody to send to."""
        return self.total == 0 or self.delivered > 0

    def add(self, result: DeliveryResult, action: StoreAction | None) -> None:
        self.results.append(result)
        if result.outcome is Outcome.DELIVERED:
            self.delivered += 1
        elif result.outcome is Outcome.TRANSIENT:
            self.transient += 1
        elif result.outcome is Outcome.GONE:
            self.gone += 1
        else:
            self.rejected += 1
        if action is StoreAction.PRUNED:
            self.pruned += 1

    def summary(self) -> dict:
        return {
            "ok": self.ok,
            "total": self.total,
            "delivered": self.delivered,
            "transient": self.transient,
            "gone": self.gone,
            "rejected": self.rejected,
            "skipped": self.skipped,
            "pruned": self.pruned,
        }


class DeliveryCoordinator:
    def __init__(
        self,
        store: SubscriptionStore,
        signer: VapidSigner,
        dispatcher: Dispatcher,
        *,
        max_concurrency: int = 10,
        deadline: float = 60.0,
        payload_format: str = "text",
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._store = store
        self._signer = signer
        self._dispatcher = dispatcher
        self._max_concurrency = max_concurrency
        self._deadline = deadline
        self._payload_format = payload_format

    async def broadcast(self, message: NotificationMessage, now: datetime | None = None) -> BroadcastReport:
        """Send *message* to every stored subscription.

        Raises:
            StoreError: the store could not be read or an outcome could not be
                recorded. Pending recipients are cancelled first.
        """
        subscriptions = self._store.list_all()
        report = BroadcastReport(total=len(subscriptions))
        if not subscriptions:
            logger.info("Broadcast skipped: no subscriptions")
            return report

        payload = message.to_payload(self._payload_format)
        semaphore = asyncio.Semaphore(self._max_concurrency)
        tokens: dict[str, VapidToken] = {}
        tasks = {
            asyncio.create_task(self._deliver(sub, payload, semaphore, tokens, now)): sub for sub in subscriptions
        }

        loop = asyncio.get_running_loop()
        deadline_at = loop.time() + self._deadline
        pending = set(tasks)
        try:
            while pending:
                remaining = deadline_at - loop.time()
                if remaining <= 0:
                    break
                done, pending = await asyncio.wait(pending, timeout=remaining, return_when=asyncio.FIRST_EXCEPTION)
                for task in done:
                    exc = task.exception()
                    if exc is not None:
                        raise exc
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for task, sub in tasks.items():
            if task in pending:
                logger.warning("Abandoned push to %s: broadcast deadline exceeded", short_endpoint(sub.endpoint))
                result = DeliveryResult(sub.endpoint, Outcome.TRANSIENT, detail="broadcast deadline exceeded")
                report.add(result, self._store.record_outcome(sub.endpoint, result.outcome, now))
                continue
            result, action = task.result()
            if result is None:
                report.skipped += 1
            else:
                report.add(result, action)

        logger.info(
            "Broadcast %r: %d/%d delivered (transient=%d gone=%d rejected=%d skipped=%d pruned=%d)",
            message.tag,
            report.delivered,
            report.total,
            report.transient,
            report.gone,
            report.rejected,
            report.skipped,
            report.pruned,
        )
        return report

    async def send_to(
        self, subscription: Subscription, message: NotificationMessage, now: datetime | None = None
    ) -> DeliveryResult | None:
        """Send *message* to one subscription. Returns None if its keys could not be used."""
        payload = message.to_payload(self._payload_format)
        try:
            result, _ = await asyncio.wait_for(
                self._deliver(subscription, payload, asyncio.Semaphore(1), {}, now),
                timeout=self._deadline,
            )
        except asyncio.TimeoutError:
            result = DeliveryResult(subscription.endpoint, Outcome.TRANSIENT, detail="deadline exceeded")
            self._store.record_outcome(subscription.endpoint, result.outcome, now)
        return result

    def _token_for(self, audience: str, tokens: dict[str, VapidToken], now: datetime | None) -> VapidToken:
        token = tokens.get(audience)
        if token is None:
            token = tokens[audience] = self._signer.sign(audience, now)
        return token

    async def _deliver(
        self,
        subscription: Subscription,
        payload: bytes,
        semaphore: asyncio.Semaphore,
        tokens: dict[str, VapidToken],
        now: datetime | None,
    ) -> tuple[DeliveryResult | None, StoreAction | None]:
        endpoint = subscription.endpoint
        async with semaphore:
            try:
                body = encrypt(payload, subscription.p256dh, subscription.auth)
            except EncryptionError as exc:
                logger.warning("Skipping push to %s: %s", short_endpoint(endpoint), exc)
                return None, None

            try:
                audience = audience_for(endpoint)
            except ValueError as exc:
                # An endpoint we cannot even address will never start working
                logger.warning("Dropping push subscription with unusable endpoint: %s", exc)
                result = DeliveryResult(endpoint, Outcome.GONE, detail=str(exc))
            else:
                try:
                    token = self._token_for(audience, tokens, now)
                    result = await self._dispatcher.send(subscription, body, token)
                except Exception as exc:
                    logger.exception("Unexpected error pushing to %s", short_endpoint(endpoint))
                    result = DeliveryResult(endpoint, Outcome.TRANSIENT, detail=f"unexpected error: {exc!r}")

        if not result.delivered:
            logger.warning(
                "Push to %s failed: %s (status=%s) %s",
                short_endpoint(endpoint),
                result.outcome.value,
                result.status_code,
                result.detail,
            )
        action = self._store.record_outcome(endpoint, result.outcome, now)
        return result, action
