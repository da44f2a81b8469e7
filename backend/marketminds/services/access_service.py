"""
Access & Quota Engine

Decides whether a user may read a report and accounts for
subscription-funded consumption. ``has_active_subscription`` is the one
place that decides whether a subscription counts as live; it checks the
flag *and* the expiry date so correctness never depends on the daily sweep
having run.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
import enum

from dateutil.relativedelta import relativedelta
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.database import utcnow, storage_guard
from ..core.events import EventKind
from ..core.exceptions import (
    AccessDeniedError,
    AlreadyPurchasedError,
    AuthenticationError,
    NotFoundError,
    QuotaExhaustedError,
)
from ..models.payment_request import PlanSnapshot
from ..models.report import Report, ReportType
from ..models.subscription import QuotaBucket, Subscription
from ..models.user import AccessType, PurchasedReport, User
from .notification_service import notification_service
import logging

logger = logging.getLogger(__name__)


class DenyReason(enum.Enum):
    AUTHENTICATION_REQUIRED = "authentication_required"
    NO_SUBSCRIPTION = "no_subscription"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    QUOTA_EXHAUSTED = "quota_exhausted"

    @property
    def message(self) -> str:
        return DENY_MESSAGES[self]


DENY_MESSAGES = {
    DenyReason.AUTHENTICATION_REQUIRED: "Sign in to access this report",
    DenyReason.NO_SUBSCRIPTION: "No active subscription or individual purchase",
    DenyReason.SUBSCRIPTION_EXPIRED: "Subscription expired or not active",
    DenyReason.QUOTA_EXHAUSTED: "No reports left in subscription",
}


@dataclass
class AccessDecision:
    has_access: bool
    access_type: Optional[AccessType] = None
    report_type: Optional[ReportType] = None
    reason: Optional[DenyReason] = None

    @classmethod
    def grant(cls, access_type: AccessType, report_type: Optional[ReportType] = None) -> "AccessDecision":
        return cls(has_access=True, access_type=access_type, report_type=report_type)

    @classmethod
    def deny(cls, reason: DenyReason) -> "AccessDecision":
        return cls(has_access=False, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_access": self.has_access,
            "access_type": self.access_type.value if self.access_type else None,
            "report_type": self.report_type.value if self.report_type else None,
            "reason": self.reason.value if self.reason else None,
            "message": self.reason.message if self.reason else None,
        }


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar-month addition; Jan 31 + 1 month is the last day of February."""
    return moment + relativedelta(months=months)


def has_active_subscription(user: Optional[User], now: Optional[datetime] = None) -> bool:
    if user is None:
        return False
    subscription = user.current_subscription
    if subscription is None or not subscription.is_active:
        return False
    return subscription.expiry_date > (now or utcnow())


def available_reports(user: Optional[User], now: Optional[datetime] = None) -> Dict[str, int]:
    if not has_active_subscription(user, now):
        return {"premium": 0, "bluechip": 0, "total": 0}
    subscription = user.current_subscription
    premium = subscription.remaining(QuotaBucket.PREMIUM)
    bluechip = subscription.remaining(QuotaBucket.BLUECHIP)
    return {"premium": premium, "bluechip": bluechip, "total": premium + bluechip}


def evaluate_access(user: Optional[User], report: Report, now: Optional[datetime] = None) -> AccessDecision:
    """Pure access decision; never mutates ``user``."""
    report_type = report.type
    if report_type == ReportType.FREE:
        return AccessDecision.grant(AccessType.FREE, report_type)

    if user is None:
        return AccessDecision.deny(DenyReason.AUTHENTICATION_REQUIRED)

    if user.owns_report(report.id):
        return AccessDecision.grant(AccessType.INDIVIDUAL, report_type)

    if has_active_subscription(user, now):
        if user.current_subscription.remaining(report_type.quota_bucket) > 0:
            return AccessDecision.grant(AccessType.SUBSCRIPTION, report_type)
        return AccessDecision.deny(DenyReason.QUOTA_EXHAUSTED)

    if user.current_subscription is not None or user.subscription_history:
        return AccessDecision.deny(DenyReason.SUBSCRIPTION_EXPIRED)
    return AccessDecision.deny(DenyReason.NO_SUBSCRIPTION)


def lock_user(db: Session, user_id: int) -> User:
    """Load ``user_id`` under a row lock; serialises one user's quota and purchase mutations."""
    # Anything read before the lock may be stale
    db.expire_all()
    user = db.execute(
        select(User).where(User.id == user_id).with_for_update()
    ).scalar_one_or_none()
    if user is None:
        raise NotFoundError("User", user_id)
    return user


class AccessService:
    def __init__(self, db: Session, notifier=None):
        self.db = db
        self.notifier = notifier or notification_service

    def _get_report(self, report_id: int) -> Report:
        report = self.db.get(Report, report_id)
        if report is None:
            raise NotFoundError("Report", report_id)
        return report

    def check_access(self, user_id: Optional[int], report_id: int, now: Optional[datetime] = None) -> AccessDecision:
        with storage_guard(self.db):
            report = self._get_report(report_id)
            user = None
            if user_id is not None:
                user = self.db.get(User, user_id)
                if user is None:
                    raise NotFoundError("User", user_id)
        return evaluate_access(user, report, now)

    def consume_quota(self, user_id: int, report_id: int, now: Optional[datetime] = None) -> bool:
        """
        Charge one report from the user's subscription and record the purchase.

        Returns True when the user holds the report afterwards (newly charged,
        or already owned in which case nothing is charged). Returns False
        without side effects when there is no live subscription or the
        bucket is empty; callers must treat False as a deny.
        """
        now = now or utcnow()
        with storage_guard(self.db):
            report = self._get_report(report_id)
            user = lock_user(self.db, user_id)

            if user.owns_report(report.id):
                self.db.commit()
                return True

            bucket = report.type.quota_bucket
            if bucket is None:
                self.db.commit()
                return True

            if not has_active_subscription(user, now):
                self.db.rollback()
                return False

            subscription = user.current_subscription
            if subscription.remaining(bucket) <= 0:
                self.db.rollback()
                return False

            try:
                with self.db.begin_nested():
                    subscription.consume(bucket)
                    user.purchased_reports.append(PurchasedReport(
                        report_id=report.id,
                        purchase_date=now,
                        price=0.0,
                        access_type=AccessType.SUBSCRIPTION.value,
                    ))
                    self.db.flush()
            except IntegrityError:
                # Another request recorded this purchase first
                self.db.commit()
                logger.info(f"Report {report.id} already granted to user {user.id}; no quota charged")
                return True

            self.db.commit()

        remaining = available_reports(user, now)
        logger.info(
            f"User {user.id} unlocked report {report.id} via subscription "
            f"({bucket.value}); remaining {remaining}"
        )
        self.notifier.emit(EventKind.SUBSCRIPTION_REPORT_UNLOCKED, {
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "report_title": report.title,
            "report_sector": report.sector,
            "remaining": remaining,
        })
        return True

    def authorize_report_file(self, user_id: Optional[int], report_id: int, now: Optional[datetime] = None) -> Report:
        """
        Gate for serving report bytes: decide access and, for subscription
        grants, charge the quota before anything is served.
        """
        decision = self.check_access(user_id, report_id, now)
        if not decision.has_access:
            if decision.reason == DenyReason.AUTHENTICATION_REQUIRED:
                raise AuthenticationError(decision.reason.message)
            raise AccessDeniedError(decision.reason.message, reason=decision.reason.value)

        if decision.access_type == AccessType.SUBSCRIPTION:
            if not self.consume_quota(user_id, report_id, now):
                raise QuotaExhaustedError()
        return self._get_report(report_id)

    def unlock_report(self, user_id: int, report_id: int, now: Optional[datetime] = None) -> Dict[str, int]:
        """Explicitly add a report to the library using the subscription."""
        decision = self.check_access(user_id, report_id, now)
        if decision.access_type == AccessType.FREE:
            # Free reports are readable as is; nothing to charge
            return available_reports(self.db.get(User, user_id), now)
        if decision.access_type == AccessType.INDIVIDUAL:
            raise AlreadyPurchasedError("You have already accessed this report")
        if not decision.has_access:
            if decision.reason == DenyReason.QUOTA_EXHAUSTED:
                raise QuotaExhaustedError()
            raise AccessDeniedError(decision.reason.message, reason=decision.reason.value)

        if not self.consume_quota(user_id, report_id, now):
            raise QuotaExhaustedError()
        return available_reports(self.db.get(User, user_id), now)

    def activate_subscription(
        self,
        user: User,
        plan: PlanSnapshot,
        amount_paid: float,
        now: Optional[datetime] = None,
        source_request_id: Optional[int] = None,
    ) -> Subscription:
        """
        Archive the current subscription (if any) and install a fresh one.

        Only the payment workflow calls this, inside its own transaction;
        the caller commits.
        """
        now = now or utcnow()
        previous = user.current_subscription
        if previous is not None:
            previous.archive(now)
            # Archive before insert so the one-current-subscription index holds
            self.db.flush()

        subscription = Subscription(
            plan_id=plan.plan_id,
            plan_name=plan.plan_name,
            price=amount_paid,
            duration_months=plan.duration_months,
            purchase_date=now,
            expiry_date=add_months(now, plan.duration_months),
            is_active=True,
            reports_included=plan.reports_included,
            reports_used=0,
            premium_quota=plan.premium_reports,
            premium_used=0,
            bluechip_quota=plan.bluechip_reports,
            bluechip_used=0,
            source_request_id=source_request_id,
        )
        user.subscriptions.append(subscription)
        self.db.flush()

        logger.info(
            f"Activated plan {plan.plan_id} for user {user.id} until {subscription.expiry_date.isoformat()}"
        )
        return subscription
