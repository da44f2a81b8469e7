# backend/marketminds/models/subscription.py
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Float, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..core.database import Base
import enum

class QuotaBucket(enum.Enum):
    PREMIUM = "premium"
    BLUECHIP = "bluechip"

class Subscription(Base):
    """
    A subscription record owned by a user.

    The row with ``archived_at IS NULL`` is the user's current subscription;
    archived rows form the subscription history. Usage counters change only
    through ``consume`` so that ``reports_used == premium_used + bluechip_used``.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index(
            "uq_subscriptions_one_current",
            "user_id",
            unique=True,
            postgresql_where=text("archived_at IS NULL"),
            sqlite_where=text("archived_at IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Plan Snapshot
    plan_id = Column(String, nullable=False)
    plan_name = Column(String, nullable=False)
    price = Column(Float, default=0.0, nullable=False)
    duration_months = Column(Integer, nullable=False)

    # Dates
    purchase_date = Column(DateTime, nullable=False)
    expiry_date = Column(DateTime, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    archived_at = Column(DateTime, nullable=True)

    # Approved payment request that activated this subscription
    source_request_id = Column(Integer, nullable=True, index=True)

    # Quotas
    reports_included = Column(Integer, default=0, nullable=False)
    reports_used = Column(Integer, default=0, nullable=False)
    premium_quota = Column(Integer, default=0, nullable=False)
    premium_used = Column(Integer, default=0, nullable=False)
    bluechip_quota = Column(Integer, default=0, nullable=False)
    bluechip_used = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="subscriptions")

    def remaining(self, bucket: QuotaBucket) -> int:
        if bucket == QuotaBucket.PREMIUM:
            return max(0, (self.premium_quota or 0) - (self.premium_used or 0))
        return max(0, (self.bluechip_quota or 0) - (self.bluechip_used or 0))

    def consume(self, bucket: QuotaBucket) -> bool:
        """Use one report from ``bucket``; False when the bucket is empty."""
        if self.remaining(bucket) <= 0:
            return False
        if bucket == QuotaBucket.PREMIUM:
            self.premium_used = (self.premium_used or 0) + 1
        else:
            self.bluechip_used = (self.bluechip_used or 0) + 1
        self.reports_used = (self.premium_used or 0) + (self.bluechip_used or 0)
        return True

    def archive(self, at, deactivate: bool = False):
        if deactivate:
            self.is_active = False
        self.archived_at = at

    def to_dict(self) -> dict:
        return {
            "plan_id": self.plan_id,
            "plan_name": self.plan_name,
            "price": self.price,
            "duration_months": self.duration_months,
            "purchase_date": self.purchase_date,
            "expiry_date": self.expiry_date,
            "is_active": self.is_active,
            "reports_included": self.reports_included,
            "reports_used": self.reports_used,
            "premium_quota": self.premium_quota,
            "premium_used": self.premium_used,
            "bluechip_quota": self.bluechip_quota,
            "bluechip_used": self.bluechip_used,
        }
