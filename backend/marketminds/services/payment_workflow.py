"""
Payment Request Workflow

Submission → pending → approved | rejected. Approval applies the grant
(individual purchase or subscription activation) in the same transaction as
the status transition and marks the request ``grant_applied``; anything
approved but not granted is picked up again by ``reconcile_ungranted``.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
import enum

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.database import utcnow, storage_guard
from ..core.events import EventKind
from ..core.exceptions import (
    ActiveSubscriptionExistsError,
    AlreadyProcessedError,
    AlreadyPurchasedError,
    DuplicateRequestError,
    InvalidStateError,
    InvalidSubmissionError,
    MarketMindsError,
    NotFoundError,
)
from ..models.payment_request import (
    PaymentRequest,
    PaymentRequestPayload,
    PaymentStatus,
    PaymentType,
    ReportPayload,
    SubscriptionPayload,
)
from ..models.report import Report
from ..models.user import AccessType, PurchasedReport, User
from .access_service import AccessService, has_active_subscription, lock_user
from .notification_service import notification_service
import logging

logger = logging.getLogger(__name__)

REPORT_PURCHASE_POINTS = 10
SUBSCRIPTION_POINTS_PER_MONTH = 20


class ReviewDecision(enum.Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


def _validate_submission(payload: PaymentRequestPayload, amount: Any, proof: Any):
    if not proof or not str(proof).strip():
        raise InvalidSubmissionError("Payment screenshot is required")
    if amount is None or amount <= 0:
        raise InvalidSubmissionError("Amount must be greater than zero")

    if isinstance(payload, ReportPayload):
        if payload.report_id is None:
            raise InvalidSubmissionError("Report ID is required for report purchases")
    elif isinstance(payload, SubscriptionPayload):
        plan = payload.plan
        if plan is None or not plan.plan_id or not plan.plan_name:
            raise InvalidSubmissionError("Subscription plan is required for subscription purchases")
        if plan.duration_months is None or plan.duration_months < 1:
            raise InvalidSubmissionError("Plan duration must be at least one month")
        if min(plan.reports_included, plan.premium_reports, plan.bluechip_reports) < 0:
            raise InvalidSubmissionError("Plan quotas cannot be negative")
    else:
        raise InvalidSubmissionError(f"Unsupported payment payload: {type(payload).__name__}")


class PaymentWorkflowService:
    def __init__(self, db: Session, notifier=None, access_service: Optional[AccessService] = None):
        self.db = db
        self.notifier = notifier or notification_service
        self.access = access_service or AccessService(db, self.notifier)

    # Submission

    def _has_pending(self, user_id: int, payload: PaymentRequestPayload) -> bool:
        query = self.db.query(PaymentRequest.id).filter(
            PaymentRequest.user_id == user_id,
            PaymentRequest.status == PaymentStatus.PENDING.value,
        )
        if isinstance(payload, ReportPayload):
            query = query.filter(
                PaymentRequest.payment_type == PaymentType.REPORT.value,
                PaymentRequest.report_id == payload.report_id,
            )
        else:
            query = query.filter(PaymentRequest.payment_type == PaymentType.SUBSCRIPTION.value)
        return query.first() is not None

    def _guard(self, user: User, payload: PaymentRequestPayload, now: datetime):
        if isinstance(payload, ReportPayload):
            if self.db.get(Report, payload.report_id) is None:
                raise NotFoundError("Report", payload.report_id)
            if user.owns_report(payload.report_id):
                raise AlreadyPurchasedError()
            if self._has_pending(user.id, payload):
                raise DuplicateRequestError("A payment request for this report is already pending")
        else:
            if has_active_subscription(user, now):
                raise ActiveSubscriptionExistsError()
            if self._has_pending(user.id, payload):
                raise DuplicateRequestError("A subscription request is already pending")

    def _create(
        self,
        user_id: int,
        payload: PaymentRequestPayload,
        amount: float,
        proof: str,
        is_admin_grant: bool,
        now: Optional[datetime],
    ) -> PaymentRequest:
        _validate_submission(payload, amount, proof)
        now = now or utcnow()

        with storage_guard(self.db):
            user = lock_user(self.db, user_id)
            try:
                self._guard(user, payload, now)
            except MarketMindsError:
                self.db.rollback()
                raise

            request = PaymentRequest(
                user_id=user.id,
                amount=amount,
                proof=proof,
                status=PaymentStatus.PENDING.value,
                is_admin_grant=is_admin_grant,
            )
            request.payload = payload
            self.db.add(request)
            try:
                self.db.commit()
            except IntegrityError as e:
                # Lost the race against a concurrent identical submission
                self.db.rollback()
                raise DuplicateRequestError() from e

        logger.info(f"Payment request {request.id} ({request.payment_type}) created for user {user_id}")
        return request

    def submit(
        self,
        user_id: int,
        payload: PaymentRequestPayload,
        amount: float,
        proof: str,
        now: Optional[datetime] = None,
    ) -> PaymentRequest:
        """Create a pending request; the user's entitlements are untouched until review."""
        return self._create(user_id, payload, amount, proof, False, now)

    def grant_by_admin(
        self,
        admin_id: int,
        user_id: int,
        payload: PaymentRequestPayload,
        amount: float,
        proof: str,
        now: Optional[datetime] = None,
    ) -> PaymentRequest:
        """
        Create a pending request on a user's behalf when payment was verified
        out of band. It still needs ``review`` to take effect.
        """
        request = self._create(user_id, payload, amount, proof, True, now)
        logger.info(f"Admin {admin_id} opened payment request {request.id} for user {user_id}")
        return request

    # Review

    def _require_report(self, request: PaymentRequest):
        if request.report_id is None or self.db.get(Report, request.report_id) is None:
            raise NotFoundError("Report", request.report_id)

    def _apply_grant(self, request_id: int, now: datetime) -> bool:
        """
        Give the user what an approved request paid for. Safe to run again:
        an existing purchase or a subscription already activated by this
        request is left as is. Returns True when something was granted.
        """
        request = self.db.get(PaymentRequest, request_id)
        user = lock_user(self.db, request.user_id)
        if request.grant_applied:
            return False

        granted = False
        payload = request.payload
        if isinstance(payload, ReportPayload):
            self._require_report(request)
            if not user.owns_report(payload.report_id):
                user.purchased_reports.append(PurchasedReport(
                    report_id=payload.report_id,
                    purchase_date=now,
                    price=request.amount,
                    access_type=AccessType.INDIVIDUAL.value,
                ))
                user.points = (user.points or 0) + REPORT_PURCHASE_POINTS
                granted = True
        elif isinstance(payload, SubscriptionPayload):
            if not any(s.source_request_id == request.id for s in user.subscriptions):
                self.access.activate_subscription(
                    user, payload.plan, request.amount, now, source_request_id=request.id
                )
                user.points = (user.points or 0) + SUBSCRIPTION_POINTS_PER_MONTH * payload.plan.duration_months
                granted = True

        request.grant_applied = True
        self.db.flush()
        return granted

    def review(
        self,
        request_id: int,
        decision: Union[ReviewDecision, str],
        comment: Optional[str] = None,
        reviewer_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> PaymentRequest:
        try:
            decision = ReviewDecision(decision)
        except ValueError as e:
            raise InvalidSubmissionError(f"Unknown review decision: {decision}") from e
        now = now or utcnow()

        with storage_guard(self.db):
            request = self.get(request_id)
            if decision == ReviewDecision.APPROVED and request.payment_type == PaymentType.REPORT.value:
                # report_id is nulled by the foreign key when the report is deleted
                self.db.refresh(request)
                if request.is_pending:
                    try:
                        self._require_report(request)
                    except NotFoundError:
                        self.db.rollback()
                        raise
            result = self.db.execute(
                update(PaymentRequest)
                .where(
                    PaymentRequest.id == request_id,
                    PaymentRequest.status == PaymentStatus.PENDING.value,
                )
                .values(
                    status=decision.value,
                    admin_comment=comment or "",
                    reviewed_at=now,
                    reviewed_by=reviewer_id,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db.rollback()
                raise AlreadyProcessedError()

            if decision == ReviewDecision.APPROVED:
                self._apply_grant(request_id, now)
            self.db.commit()

            self.db.expire_all()
            request = self.get(request_id)

        logger.info(f"Payment request {request_id} {decision.value} by {reviewer_id}")
        self._notify_decision(request)
        return request

    def reconcile_ungranted(self, now: Optional[datetime] = None) -> int:
        """Re-apply grants for approved requests whose grant never landed."""
        now = now or utcnow()
        with storage_guard(self.db):
            pending_ids = [
                row.id
                for row in self.db.query(PaymentRequest.id).filter(
                    PaymentRequest.status == PaymentStatus.APPROVED.value,
                    PaymentRequest.grant_applied.is_(False),
                ).order_by(PaymentRequest.id)
            ]

        reconciled = 0
        for request_id in pending_ids:
            try:
                granted = self._apply_grant(request_id, now)
                self.db.commit()
            except (MarketMindsError, SQLAlchemyError) as e:
                self.db.rollback()
                logger.error(f"Failed to reconcile payment request {request_id}: {e}")
                continue
            if granted:
                reconciled += 1
                logger.info(f"Reconciled grant for payment request {request_id}")
        return reconciled

    # Notifications

    def _decision_payload(self, request: PaymentRequest) -> Dict[str, Any]:
        user = request.user
        payload = {
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "request_id": request.id,
            "purchase_type": request.payment_type,
            "item_name": request.item_name,
            "amount": request.amount,
            "admin_comment": request.admin_comment or "",
        }
        if request.status == PaymentStatus.APPROVED.value and request.payment_type == PaymentType.SUBSCRIPTION.value:
            subscription = next(
                (s for s in user.subscriptions if s.source_request_id == request.id), None
            )
            payload["subscription"] = {
                "plan_name": request.plan_name,
                "duration_months": request.plan_duration_months,
                "reports_included": request.plan_reports_included,
                "premium_reports": request.plan_premium_reports,
                "bluechip_reports": request.plan_bluechip_reports,
                "expiry_date": subscription.expiry_date if subscription else None,
            }
        return payload

    def _notify_decision(self, request: PaymentRequest) -> bool:
        kind = (
            EventKind.PURCHASE_APPROVED
            if request.status == PaymentStatus.APPROVED.value
            else EventKind.PURCHASE_REJECTED
        )
        return self.notifier.emit(kind, self._decision_payload(request))

    def resend_decision_notification(self, request_id: int) -> bool:
        request = self.get(request_id)
        if request.is_pending:
            raise InvalidStateError("Cannot send a decision email for a pending request")
        return self._notify_decision(request)

    # Queries

    def get(self, request_id: int) -> PaymentRequest:
        request = self.db.get(PaymentRequest, request_id)
        if request is None:
            raise NotFoundError("Payment request", request_id)
        return request

    def list_for_user(self, user_id: int) -> List[PaymentRequest]:
        return (
            self.db.query(PaymentRequest)
            .filter(PaymentRequest.user_id == user_id)
            .order_by(PaymentRequest.created_at.desc(), PaymentRequest.id.desc())
            .all()
        )

    def list_all(self, status: Optional[str] = None) -> List[PaymentRequest]:
        query = self.db.query(PaymentRequest)
        if status:
            query = query.filter(PaymentRequest.status == PaymentStatus(status).value)
        return query.order_by(PaymentRequest.created_at.desc(), PaymentRequest.id.desc()).all()
