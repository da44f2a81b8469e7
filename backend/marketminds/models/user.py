# backend/marketminds/models/user.py
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..core.database import Base
import enum

class AccessType(enum.Enum):
    FREE = "free"
    INDIVIDUAL = "individual"
    SUBSCRIPTION = "subscription"

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)

    # Rewards
    points = Column(Integer, default=0, nullable=False)

    # Password Reset
    reset_otp_hash = Column(String, nullable=True)
    reset_otp_expires_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    subscriptions = relationship(
        "Subscription", back_populates="user", cascade="all, delete-orphan", order_by="Subscription.id"
    )
    purchased_reports = relationship(
        "PurchasedReport", back_populates="user", cascade="all, delete-orphan", order_by="PurchasedReport.id"
    )
    payment_requests = relationship(
        "PaymentRequest", back_populates="user", foreign_keys="PaymentRequest.user_id"
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def current_subscription(self):
        """The un-archived subscription, if any (active or not yet swept)."""
        for subscription in self.subscriptions:
            if subscription.archived_at is None:
                return subscription
        return None

    @property
    def subscription_history(self):
        archived = [s for s in self.subscriptions if s.archived_at is not None]
        return sorted(archived, key=lambda s: (s.archived_at, s.id or 0))

    def find_purchase(self, report_id: int):
        for purchase in self.purchased_reports:
            if purchase.report_id == report_id:
                return purchase
        return None

    def owns_report(self, report_id: int) -> bool:
        return self.find_purchase(report_id) is not None

class PurchasedReport(Base):
    __tablename__ = "purchased_reports"
    __table_args__ = (
        UniqueConstraint("user_id", "report_id", name="uq_purchased_reports_user_report"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Not a foreign key: the entitlement outlives a deleted report
    report_id = Column(Integer, nullable=False, index=True)

    purchase_date = Column(DateTime, nullable=False)
    price = Column(Float, default=0.0, nullable=False)
    access_type = Column(String, nullable=False)  # individual, subscription

    user = relationship("User", back_populates="purchased_reports")
