from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from weatherpush.database import Base


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    endpoint = Column(String(1000), nullable=False, unique=True)
    p256dh = Column(String(255), nullable=False)  # Client public key
    auth = Column(String(255), nullable=False)  # Auth secret
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_success_at = Column(DateTime(timezone=True), nullable=True)
    # Reset on every successful delivery; the row is dropped once it reaches PUSH_FAILURE_CEILING
    consecutive_failures = Column(Integer, nullable=False, default=0, server_default="0")

    def __repr__(self) -> str:
        return f"<PushSubscription {self.endpoint[:48]!r} failures={self.consecutive_failures}>"
