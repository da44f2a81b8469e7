from .user import User, PurchasedReport, AccessType
from .subscription import Subscription, QuotaBucket
from .report import Report, ReportFile, ReportType
from .payment_request import (
    PaymentRequest,
    PaymentRequestPayload,
    PaymentStatus,
    PaymentType,
    PlanSnapshot,
    ReportPayload,
    SubscriptionPayload,
)
from .contact import Contact

__all__ = [
    "User", "PurchasedReport", "AccessType",
    "Subscription", "QuotaBucket",
    "Report", "ReportFile", "ReportType",
    "PaymentRequest", "PaymentRequestPayload", "PaymentStatus", "PaymentType",
    "PlanSnapshot", "ReportPayload", "SubscriptionPayload",
    "Contact",
]
