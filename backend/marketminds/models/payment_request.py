# backend/marketminds/models/payment_request.py
from dataclasses import dataclass, asdict
from typing import Union
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, Float, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..core.database import Base
import enum

class PaymentType(enum.Enum):
    REPORT = "report"
    SUBSCRIPTION = "subscription"

class PaymentStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

@dataclass(frozen=True)
class PlanSnapshot:
    plan_id: str
    plan_name: str
    duration_months: int
    reports_included: int
    premium_reports: int
    bluechip_reports: int

    def to_dict(self) -> dict:
        return asdict(self)

@dataclass(frozen=True)
class ReportPayload:
    report_id: int
    payment_type: PaymentType = PaymentType.REPORT

@dataclass(frozen=True)
class SubscriptionPayload:
    plan: PlanSnapshot
    payment_type: PaymentType = PaymentType.SUBSCRIPTION

PaymentRequestPayload = Union[ReportPayload, SubscriptionPayload]

class PaymentRequest(Base):
    __tablename__ = "payment_requests"
    __table_args__ = (
        Index(
            "uq_payment_requests_pending_report",
            "user_id", "report_id",
            unique=True,
            postgresql_where=text("status = 'pending' AND payment_type = 'report'"),
            sqlite_where=text("status = 'pending' AND payment_type = 'report'"),
        ),
        Index(
            "uq_payment_requests_pending_subscription",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'pending' AND payment_type = 'subscription'"),
            sqlite_where=text("status = 'pending' AND payment_type = 'subscription'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_type = Column(String, nullable=False)  # report, subscription

    # Individual Report Purchase
    report_id = Column(Integer, ForeignKey("reports.id", ondelete="SET NULL"), nullable=True)

    # Subscription Plan Snapshot
    plan_id = Column(String)
    plan_name = Column(String)
    plan_duration_months = Column(Integer)
    plan_reports_included = Column(Integer)
    plan_premium_reports = Column(Integer)
    plan_bluechip_reports = Column(Integer)

    amount = Column(Float, nullable=False)
    proof = Column(Text, nullable=False)  # payment screenshot, opaque

    # Review
    status = Column(String, default=PaymentStatus.PENDING.value, nullable=False, index=True)
    admin_comment = Column(Text, default="")
    reviewed_at = Column(DateTime)
    reviewed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_admin_grant = Column(Boolean, default=False, nullable=False)

    # Set in the same transaction as the user-side grant
    grant_applied = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="payment_requests", foreign_keys=[user_id])
    reviewer = relationship("User", foreign_keys=[reviewed_by])
    report = relationship("Report")

    @property
    def payload(self) -> PaymentRequestPayload:
        kind = PaymentType(self.payment_type)
        if kind == PaymentType.REPORT:
            return ReportPayload(report_id=self.report_id)
        if kind == PaymentType.SUBSCRIPTION:
            return SubscriptionPayload(plan=PlanSnapshot(
                plan_id=self.plan_id,
                plan_name=self.plan_name,
                duration_months=self.plan_duration_months,
                reports_included=self.plan_reports_included,
                premium_reports=self.plan_premium_reports,
                bluechip_reports=self.plan_bluechip_reports,
            ))
        raise ValueError(f"Unknown payment type: {self.payment_type}")

    @payload.setter
    def payload(self, payload: PaymentRequestPayload):
        if isinstance(payload, ReportPayload):
            self.payment_type = PaymentType.REPORT.value
            self.report_id = payload.report_id
        elif isinstance(payload, SubscriptionPayload):
            plan = payload.plan
            self.payment_type = PaymentType.SUBSCRIPTION.value
            self.plan_id = plan.plan_id
            self.plan_name = plan.plan_name
            self.plan_duration_months = plan.duration_months
            self.plan_reports_included = plan.reports_included
            self.plan_premium_reports = plan.premium_reports
            self.plan_bluechip_reports = plan.bluechip_reports
        else:
            raise TypeError(f"Unsupported payment payload: {type(payload).__name__}")

    @property
    def subscription_plan(self):
        payload = self.payload
        return payload.plan.to_dict() if isinstance(payload, SubscriptionPayload) else None

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING.value

    @property
    def item_name(self) -> str:
        if self.payment_type == PaymentType.SUBSCRIPTION.value:
            return self.plan_name or "Subscription Plan"
        return self.report.title if self.report else "Report"
