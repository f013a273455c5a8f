"""
Daily summary trigger.

Sleeps until SUMMARY_HOUR local time, broadcasts the summary once per day and
records the send in ``notification_log`` so a restart later the same day does
not notify everyone twice.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from weatherpush.models.notification_log import NotificationLog
from weatherpush.push.coordinator import DeliveryCoordinator
from weatherpush.push.messages import summary_message

logger = logging.getLogger(__name__)

DAILY_SUMMARY = "daily_summary"


def seconds_until_next(hour: int, now: datetime) -> float:
    """Seconds from *now* (tz-aware) until the next HH:00 in the same timezone."""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    # Same-tzinfo subtraction ignores DST shifts; compare real instants
    return (target.astimezone(timezone.utc) - now.astimezone(timezone.utc)).total_seconds()


def already_notified(db: Session, kind: str, day: date) -> bool:
    stmt = select(NotificationLog.id).where(NotificationLog.kind == kind, NotificationLog.sent_date == day)
    return db.execute(stmt).first() is not None


def log_notification(db: Session, kind: str, day: date) -> None:
    db.add(NotificationLog(kind=kind, sent_date=day))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()


async def run_daily_summary(coordinator: DeliveryCoordinator, session_factory: sessionmaker, today: date) -> bool:
    """Broadcast today's summary unless it was already sent. Returns True if a broadcast ran."""
    with session_factory() as db:
        if already_notified(db, DAILY_SUMMARY, today):
            logger.info("Daily summary for %s already sent", today)
            return False

    report = await coordinator.broadcast(summary_message())

    with session_factory() as db:
        log_notification(db, DAILY_SUMMARY, today)
    logger.info("Daily summary for %s: %s", today, report.summary())
    return True


async def summary_loop(
    coordinator: DeliveryCoordinator,
    session_factory: sessionmaker,
    hour: int,
    tz_name: str,
) -> None:
    tz = ZoneInfo(tz_name)
    logger.info("Daily summary scheduled at %02d:00 %s", hour, tz_name)
    while True:
        delay = seconds_until_next(hour, datetime.now(tz))
        await asyncio.sleep(delay)
        try:
            await run_daily_summary(coordinator, session_factory, datetime.now(tz).date())
        except Exception:
            logger.exception("Daily summary failed")
