"""Plain data passed between the store, dispatcher and coordinator."""

import enum
from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Subscription:
    endpoint: str
    p256dh: str
    auth: str
    created_at: datetime | None = None
    last_success_at: datetime | None = None
    consecutive_failures: int = 0


class Outcome(str, enum.Enum):
    DELIVERED = "delivered"
    # Retry at the next trigger; the subscription stays.
    TRANSIENT = "transient"
    # Subscription is dead (404/410) and must be pruned.
    GONE = "gone"
    # This message was refused (413, or a request the push service will never accept).
    # Terminal for the message only.
    REJECTED = "rejected"


@dataclass
class DeliveryResult:
    endpoint: str
    outcome: Outcome
    status_code: int | None = None
    detail: str = ""
    retry_after: int | None = None

    @property
    def delivered(self) -> bool:
        return self.outcome is Outcome.DELIVERED
