"""
Subscription Expiry Sweep

Daily batch job. The deactivation pass persists what ``has_active_subscription``
already reports lazily; the warning pass only emits notifications and
re-notifies on every run while a subscription sits inside the window.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional
import math

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.database import utcnow
from ..core.events import EventKind
from ..models.subscription import Subscription
from .access_service import lock_user
from .notification_service import notification_service
import logging

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    deactivated: int = 0
    warned: int = 0
    errors: int = 0
    failed_user_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "deactivated": self.deactivated,
            "warned": self.warned,
            "errors": self.errors,
            "failed_user_ids": list(self.failed_user_ids),
        }


def days_left(expiry_date: datetime, now: datetime) -> int:
    return math.ceil((expiry_date - now).total_seconds() / timedelta(days=1).total_seconds())


def _subscriber_payload(subscription: Subscription) -> dict:
    user = subscription.user
    return {
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "plan_name": subscription.plan_name,
        "expiry_date": subscription.expiry_date,
    }


def _deactivate(db: Session, notifier, user_id: int, now: datetime) -> bool:
    user = lock_user(db, user_id)
    subscription = user.current_subscription
    # Renewed or already swept since the candidate scan
    if subscription is None or not subscription.is_active or subscription.expiry_date >= now:
        db.rollback()
        return False

    subscription.archive(now, deactivate=True)
    db.commit()
    logger.info(f"Deactivated expired subscription {subscription.id} for user {user_id}")

    try:
        notifier.emit(EventKind.SUBSCRIPTION_EXPIRED, _subscriber_payload(subscription))
    except Exception as e:
        logger.error(f"Expiry notification for user {user_id} failed: {e}")
    return True


def run_expiry_sweep(
    db: Session,
    notifier=None,
    now: Optional[datetime] = None,
    warning_days: int = settings.EXPIRY_WARNING_DAYS,
) -> SweepResult:
    """
    Deactivate expired subscriptions and warn the ones about to expire.

    A failure for one user is rolled back, logged and counted; the sweep
    carries on and never raises to the scheduler.
    """
    notifier = notifier or notification_service
    now = now or utcnow()
    result = SweepResult()

    try:
        expired_user_ids = [
            row.user_id
            for row in db.query(Subscription.user_id).filter(
                Subscription.archived_at.is_(None),
                Subscription.is_active.is_(True),
                Subscription.expiry_date < now,
            ).order_by(Subscription.user_id)
        ]
    except Exception as e:
        db.rollback()
        logger.error(f"Expiry sweep could not load expired subscriptions: {e}")
        expired_user_ids = []
        result.errors += 1

    for user_id in expired_user_ids:
        try:
            if _deactivate(db, notifier, user_id, now):
                result.deactivated += 1
        except Exception as e:
            db.rollback()
            result.errors += 1
            result.failed_user_ids.append(user_id)
            logger.error(f"Failed to deactivate subscription for user {user_id}: {e}")

    try:
        expiring = (
            db.query(Subscription)
            .filter(
                Subscription.archived_at.is_(None),
                Subscription.is_active.is_(True),
                Subscription.expiry_date >= now,
                Subscription.expiry_date < now + timedelta(days=warning_days),
            )
            .order_by(Subscription.expiry_date, Subscription.id)
            .all()
        )
    except Exception as e:
        db.rollback()
        logger.error(f"Expiry sweep could not load expiring subscriptions: {e}")
        expiring = []
        result.errors += 1

    for subscription in expiring:
        try:
            payload = _subscriber_payload(subscription)
            payload["days_left"] = days_left(subscription.expiry_date, now)
            notifier.emit(EventKind.SUBSCRIPTION_EXPIRING_SOON, payload)
            result.warned += 1
        except Exception as e:
            result.errors += 1
            result.failed_user_ids.append(subscription.user_id)
            logger.error(f"Failed to send expiry warning to user {subscription.user_id}: {e}")

    logger.info(
        f"Expiry sweep at {now.isoformat()}: {result.deactivated} deactivated, "
        f"{result.warned} warned, {result.errors} errors"
    )
    return result
