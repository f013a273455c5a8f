"""
Single-request push dispatch.

Sends one encrypted body to one push service endpoint and classifies the
response. HTTP-level failures are returned as outcomes, never raised.
"""

import logging

import httpx

from weatherpush.push.records import DeliveryResult, Outcome, Subscription
from weatherpush.push.vapid import VapidToken, authorization_header

logger = logging.getLogger(__name__)


def classify_status(status_code: int) -> Outcome:
    if 200 <= status_code < 300:
        return Outcome.DELIVERED
    if status_code in (404, 410):
        return Outcome.GONE
    if status_code == 429 or status_code >= 500:
        return Outcome.TRANSIENT
    return Outcome.REJECTED


def _retry_after(response: httpx.Response) -> int | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def short_endpoint(endpoint: str) -> str:
    """Truncate an endpoint for logs; the tail is a bearer capability."""
    return endpoint if len(endpoint) <= 60 else f"{endpoint[:57]}..."


class Dispatcher:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        ttl: int = 43_200,
        urgency: str = "high",
        timeout: float = 10.0,
    ):
        self._client = client
        self._ttl = ttl
        self._urgency = urgency
        self._timeout = timeout

    async def send(self, subscription: Subscription, body: bytes, token: VapidToken) -> DeliveryResult:
        endpoint = subscription.endpoint
        headers = {
            "TTL": str(self._ttl),
            "Content-Encoding": "aes128gcm",
            "Content-Type": "application/octet-stream",
            "Urgency": self._urgency,
            "Authorization": authorization_header(token),
        }
        try:
            response = await self._client.post(endpoint, content=body, headers=headers, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            logger.debug("Push request to %s timed out", short_endpoint(endpoint))
            return DeliveryResult(endpoint, Outcome.TRANSIENT, detail=f"timeout: {exc!r}")
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            # No request can ever reach this endpoint
            logger.debug("Push endpoint %s is not addressable: %s", short_endpoint(endpoint), exc)
            return DeliveryResult(endpoint, Outcome.GONE, detail=f"invalid endpoint: {exc}")
        except httpx.HTTPError as exc:
            logger.debug("Push request to %s failed: %s", short_endpoint(endpoint), exc)
            return DeliveryResult(endpoint, Outcome.TRANSIENT, detail=f"network error: {exc}")

        outcome = classify_status(response.status_code)
        logger.debug("Push service %s answered %s (%s)", short_endpoint(endpoint), response.status_code, outcome.value)
        detail = "" if outcome is Outcome.DELIVERED else response.text[:200]
        return DeliveryResult(
            endpoint,
            outcome,
            status_code=response.status_code,
            detail=detail,
            retry_after=_retry_after(response),
        )
