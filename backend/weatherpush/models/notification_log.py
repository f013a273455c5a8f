from sqlalchemy import Column, Date, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from weatherpush.database import Base


class NotificationLog(Base):
    """One row per scheduled notification kind per calendar day."""

    __tablename__ = "notification_log"
    __table_args__ = (UniqueConstraint("kind", "sent_date", name="uq_notification_log_kind_date"),)

    id = Column(Integer, primary_key=True)
    kind = Column(String(50), nullable=False)
    sent_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
