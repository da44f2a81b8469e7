# backend/marketminds/core/events.py
import enum

class EventKind(enum.Enum):
    """Transactional notification events emitted by the core services."""
    WELCOME = "welcome"
    OTP = "otp"
    PASSWORD_RESET_SUCCESS = "password_reset_success"
    PURCHASE_APPROVED = "purchase_approved"
    PURCHASE_REJECTED = "purchase_rejected"
    SUBSCRIPTION_REPORT_UNLOCKED = "subscription_report_unlocked"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    SUBSCRIPTION_EXPIRING_SOON = "subscription_expiring_soon"
    CONTACT_SUBMISSION = "contact_submission"
