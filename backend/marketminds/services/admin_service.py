"""
Admin Service - dashboard aggregation and the admin's view of users
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.database import utcnow
from ..models.contact import Contact
from ..models.payment_request import PaymentRequest, PaymentStatus
from ..models.report import Report
from ..models.user import User
import logging

logger = logging.getLogger(__name__)

RECENT_LIMIT = 5


class AdminService:
    def __init__(self, db: Session):
        self.db = db

    def _count(self, model, *criteria) -> int:
        query = self.db.query(func.count(model.id))
        if criteria:
            query = query.filter(*criteria)
        return query.scalar() or 0

    def dashboard(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        since = (now or utcnow()) - timedelta(hours=24)

        recent_users = (
            self.db.query(User).order_by(User.created_at.desc(), User.id.desc()).limit(RECENT_LIMIT).all()
        )
        recent_requests = (
            self.db.query(PaymentRequest)
            .order_by(PaymentRequest.created_at.desc(), PaymentRequest.id.desc())
            .limit(RECENT_LIMIT)
            .all()
        )

        return {
            "total_users": self._count(User),
            "total_reports": self._count(Report),
            "total_requests": self._count(PaymentRequest),
            "pending_requests": self._count(PaymentRequest, PaymentRequest.status == PaymentStatus.PENDING.value),
            "total_contacts": self._count(Contact),
            "unread_contacts": self._count(Contact, Contact.is_read.is_(False)),
            "recent_users": [
                {"id": u.id, "first_name": u.first_name, "last_name": u.last_name,
                 "email": u.email, "created_at": u.created_at}
                for u in recent_users
            ],
            "recent_requests": recent_requests,
            "last_24h": {
                "users": self._count(User, User.created_at >= since),
                "reports": self._count(Report, Report.created_at >= since),
                "requests": self._count(PaymentRequest, PaymentRequest.created_at >= since),
                "contacts": self._count(Contact, Contact.submitted_at >= since),
            },
        }

    def list_users(self) -> List[Dict[str, Any]]:
        """Every user with their library and payment requests resolved for display."""
        users = self.db.query(User).order_by(User.id).all()
        reports = {r.id: r for r in self.db.query(Report).all()}

        listing = []
        for user in users:
            purchases = []
            for purchase in user.purchased_reports:
                report = reports.get(purchase.report_id)
                purchases.append({
                    "report_id": purchase.report_id,
                    "title": report.title if report else "Unknown Report",
                    "sector": report.sector if report else "N/A",
                    "report_type": report.report_type if report else "premium",
                    "upload_date": report.upload_date if report else None,
                    "purchase_date": purchase.purchase_date,
                    "price": purchase.price,
                    "access_type": purchase.access_type,
                })

            requests = sorted(user.payment_requests, key=lambda r: r.id, reverse=True)
            listing.append({
                "id": user.id,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "email": user.email,
                "is_admin": user.is_admin,
                "points": user.points,
                "created_at": user.created_at,
                "current_subscription": (
                    user.current_subscription.to_dict() if user.current_subscription else None
                ),
                "purchased_reports": purchases,
                "payment_requests": [
                    {
                        "id": r.id,
                        "payment_type": r.payment_type,
                        "item_name": r.item_name,
                        "amount": r.amount,
                        "status": r.status,
                        "created_at": r.created_at,
                    }
                    for r in requests
                ],
            })
        return listing

    def list_contacts(self) -> List[Contact]:
        return self.db.query(Contact).order_by(Contact.submitted_at.desc(), Contact.id.desc()).all()
