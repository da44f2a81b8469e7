"""
User Service - accounts, password reset and the user's own dashboard views
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import math

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.database import utcnow, storage_guard
from ..core.events import EventKind
from ..core.exceptions import (
    AuthenticationError,
    EmailAlreadyRegisteredError,
    InvalidSubmissionError,
    NotFoundError,
)
from ..core.security import create_access_token, generate_otp, hash_password, verify_password
from ..models.payment_request import PaymentRequest, PaymentStatus
from ..models.report import Report
from ..models.user import User
from .access_service import available_reports, has_active_subscription
from .notification_service import notification_service
import logging

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _user_payload(user: User) -> Dict[str, Any]:
    return {"email": user.email, "first_name": user.first_name, "last_name": user.last_name}


class UserService:
    def __init__(self, db: Session, notifier=None):
        self.db = db
        self.notifier = notifier or notification_service

    def get(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    def get_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == _normalize_email(email)).first()

    # Accounts

    def signup(self, first_name: str, last_name: str, email: str, password: str) -> User:
        if not first_name or not last_name or not email or not password:
            raise InvalidSubmissionError("All fields are required")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidSubmissionError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        email = _normalize_email(email)
        with storage_guard(self.db):
            if self.get_by_email(email) is not None:
                raise EmailAlreadyRegisteredError()

            user = User(
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                email=email,
                hashed_password=hash_password(password),
            )
            self.db.add(user)
            try:
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                raise EmailAlreadyRegisteredError() from e

        logger.info(f"New user registered: {user.id}")
        self.notifier.emit(EventKind.WELCOME, _user_payload(user))
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.get_by_email(email)
        if user is None or not verify_password(password or "", user.hashed_password):
            raise AuthenticationError("Invalid email or password")
        return user

    def signin(self, email: str, password: str) -> Dict[str, Any]:
        user = self.authenticate(email, password)
        logger.info(f"User {user.id} signed in")
        return {
            "access_token": create_access_token(user.id),
            "token_type": "bearer",
            "user": user,
        }

    def request_password_reset(self, email: str, now: Optional[datetime] = None) -> bool:
        """
        Issue a one-time code for ``email``. Unknown addresses return False
        without any other effect so the endpoint does not reveal accounts.
        """
        now = now or utcnow()
        with storage_guard(self.db):
            user = self.get_by_email(email)
            if user is None:
                logger.info("Password reset requested for unknown email")
                return False

            otp = generate_otp()
            user.reset_otp_hash = hash_password(otp)
            user.reset_otp_expires_at = now + timedelta(minutes=settings.OTP_EXPIRE_MINUTES)
            self.db.commit()

        self.notifier.emit(EventKind.OTP, {
            **_user_payload(user),
            "otp": otp,
            "expires_minutes": settings.OTP_EXPIRE_MINUTES,
        })
        return True

    def reset_password(self, email: str, otp: str, new_password: str, now: Optional[datetime] = None) -> User:
        now = now or utcnow()
        if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
            raise InvalidSubmissionError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        with storage_guard(self.db):
            user = self.get_by_email(email)
            if (
                user is None
                or not user.reset_otp_hash
                or user.reset_otp_expires_at is None
                or user.reset_otp_expires_at <= now
                or not verify_password(otp or "", user.reset_otp_hash)
            ):
                raise InvalidSubmissionError("Invalid or expired code")

            user.hashed_password = hash_password(new_password)
            user.reset_otp_hash = None
            user.reset_otp_expires_at = None
            self.db.commit()

        logger.info(f"Password reset for user {user.id}")
        self.notifier.emit(EventKind.PASSWORD_RESET_SUCCESS, _user_payload(user))
        return user

    # Dashboard views

    def subscription_status(self, user: User, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        current = user.current_subscription
        days_left = 0
        if current is not None:
            days_left = max(0, math.ceil((current.expiry_date - now).total_seconds() / 86400))
        return {
            "has_active": has_active_subscription(user, now),
            "current": current.to_dict() if current else None,
            "available_reports": available_reports(user, now),
            "expiry_date": current.expiry_date if current else None,
            "days_left": days_left,
            "history": [s.to_dict() for s in user.subscription_history],
        }

    def purchased_reports(self, user: User) -> List[Dict[str, Any]]:
        """The user's library; entries whose report was deleted are skipped."""
        purchases = list(user.purchased_reports)
        if not purchases:
            return []

        report_ids = [p.report_id for p in purchases]
        reports = {r.id: r for r in self.db.query(Report).filter(Report.id.in_(report_ids)).all()}

        library = []
        for purchase in purchases:
            report = reports.get(purchase.report_id)
            if report is None:
                continue
            library.append({
                "id": report.id,
                "title": report.title,
                "sector": report.sector,
                "description": report.description,
                "report_type": report.report_type,
                "upload_date": report.upload_date,
                "purchase_date": purchase.purchase_date,
                "access_type": purchase.access_type,
                "price": purchase.price,
            })
        return library

    def dashboard(self, user: User, now: Optional[datetime] = None) -> Dict[str, Any]:
        pending = (
            self.db.query(PaymentRequest)
            .filter(
                PaymentRequest.user_id == user.id,
                PaymentRequest.status == PaymentStatus.PENDING.value,
            )
            .order_by(PaymentRequest.created_at.desc(), PaymentRequest.id.desc())
            .all()
        )
        return {
            "user": {
                "id": user.id,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "email": user.email,
                "points": user.points,
                "join_date": user.created_at,
            },
            "subscription": self.subscription_status(user, now),
            "purchased_reports": self.purchased_reports(user),
            "pending_requests": pending,
            "stats": {
                "total_reports_accessed": len(user.purchased_reports),
                "total_spent": sum(p.price or 0 for p in user.purchased_reports),
                "pending_payments": len(pending),
            },
        }
