# backend/marketminds/services/email_service.py
import smtplib
from dataclasses import dataclass
from datetime import datetime
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import formataddr
from html import escape
from typing import Any, Callable, Dict, Optional
from ..core.config import settings
from ..core.events import EventKind
import logging

logger = logging.getLogger(__name__)

@dataclass
class OutgoingEmail:
    to: str
    subject: str
    html: str
    high_priority: bool = False

def _greeting(payload: Dict[str, Any]) -> str:
    name = " ".join(filter(None, [payload.get("first_name"), payload.get("last_name")]))
    return f"<p>Hi {escape(name or 'there')},</p>"

def _format_date(value: Any) -> str:
    if not value:
        return "N/A"
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return escape(value)
    return value.strftime("%B %d, %Y")

def _wrap(title: str, body: str) -> str:
    return (
        "<div style=\"font-family:Arial,sans-serif;max-width:600px;margin:0 auto\">"
        f"<h2 style=\"color:#1e3a8a\">{escape(title)}</h2>{body}"
        "<p style=\"color:#6b7280;font-size:12px\">MarketMinds Research</p></div>"
    )

def _welcome(p):
    body = _greeting(p) + "<p>Welcome to MarketMinds. Your account is ready and you can start exploring our research reports.</p>"
    return "Welcome to MarketMinds - Let's Get Started!", _wrap("Welcome aboard", body)

def _otp(p):
    body = _greeting(p) + (
        f"<p>Your password reset code is:</p><h1 style=\"letter-spacing:6px\">{escape(str(p['otp']))}</h1>"
        f"<p>The code expires in {p.get('expires_minutes', settings.OTP_EXPIRE_MINUTES)} minutes.</p>"
    )
    return "Your Password Reset Code", _wrap("Password reset", body)

def _password_reset_success(p):
    body = _greeting(p) + "<p>Your password has been reset successfully. If this wasn't you, contact support immediately.</p>"
    return "Password Successfully Reset - MarketMinds", _wrap("Password updated", body)

def _purchase_approved(p):
    is_subscription = p.get("purchase_type") == "subscription"
    body = _greeting(p) + (
        f"<p>Your payment of {p.get('amount')} for <strong>{escape(str(p.get('item_name')))}</strong> has been approved.</p>"
    )
    details = p.get("subscription")
    if is_subscription and details:
        body += (
            "<ul>"
            f"<li>Duration: {details.get('duration_months')} month(s)</li>"
            f"<li>Total reports: {details.get('reports_included')}</li>"
            f"<li>Premium reports: {details.get('premium_reports')}</li>"
            f"<li>Bluechip reports: {details.get('bluechip_reports')}</li>"
            f"<li>Valid until: {_format_date(details.get('expiry_date'))}</li>"
            "</ul>"
        )
    if p.get("admin_comment"):
        body += f"<p>Note from our team: {escape(p['admin_comment'])}</p>"
    subject = "Subscription Activated - MarketMinds" if is_subscription else "Purchase Approved - MarketMinds"
    return subject, _wrap("Payment approved", body)

def _purchase_rejected(p):
    body = _greeting(p) + (
        f"<p>We could not verify your payment of {p.get('amount')} for "
        f"<strong>{escape(str(p.get('item_name')))}</strong> (request #{p.get('request_id')}).</p>"
    )
    if p.get("admin_comment"):
        body += f"<p>Reason: {escape(p['admin_comment'])}</p>"
    return "Payment Request Rejected - MarketMinds", _wrap("Payment rejected", body)

def _report_unlocked(p):
    remaining = p.get("remaining") or {}
    body = _greeting(p) + (
        f"<p><strong>{escape(str(p.get('report_title')))}</strong> ({escape(str(p.get('report_sector')))}) "
        "has been added to your library using your subscription.</p>"
        f"<p>Remaining: {remaining.get('premium', 0)} premium, {remaining.get('bluechip', 0)} bluechip.</p>"
    )
    return "Report Unlocked - MarketMinds", _wrap("Report unlocked", body)

def _subscription_expired(p):
    body = _greeting(p) + (
        f"<p>Your <strong>{escape(str(p.get('plan_name')))}</strong> subscription expired on "
        f"{_format_date(p.get('expiry_date'))}. Renew to keep accessing premium research.</p>"
    )
    return "Your MarketMinds Subscription Has Expired", _wrap("Subscription expired", body)

def _subscription_expiring_soon(p):
    days_left = p.get("days_left")
    body = _greeting(p) + (
        f"<p>Your <strong>{escape(str(p.get('plan_name')))}</strong> subscription expires on "
        f"{_format_date(p.get('expiry_date'))} ({days_left} day(s) left).</p>"
    )
    return f"Your MarketMinds Subscription Expires in {days_left} Days", _wrap("Subscription expiring soon", body)

def _contact_submission(p):
    rows = "".join(
        f"<tr><td><strong>{label}</strong></td><td>{escape(str(p.get(key) or '-'))}</td></tr>"
        for label, key in [("Name", "name"), ("Email", "email"), ("Phone", "phone"),
                           ("Country", "country"), ("Subject", "subject"), ("Message", "message")]
    )
    return "New Contact form submission - MarketMinds", _wrap("New contact message", f"<table>{rows}</table>")

TEMPLATES: Dict[EventKind, Callable[[Dict[str, Any]], tuple]] = {
    EventKind.WELCOME: _welcome,
    EventKind.OTP: _otp,
    EventKind.PASSWORD_RESET_SUCCESS: _password_reset_success,
    EventKind.PURCHASE_APPROVED: _purchase_approved,
    EventKind.PURCHASE_REJECTED: _purchase_rejected,
    EventKind.SUBSCRIPTION_REPORT_UNLOCKED: _report_unlocked,
    EventKind.SUBSCRIPTION_EXPIRED: _subscription_expired,
    EventKind.SUBSCRIPTION_EXPIRING_SOON: _subscription_expiring_soon,
    EventKind.CONTACT_SUBMISSION: _contact_submission,
}

HIGH_PRIORITY = {EventKind.OTP, EventKind.PURCHASE_APPROVED, EventKind.PURCHASE_REJECTED}

class EmailService:
    def __init__(self, host: Optional[str] = None, port: Optional[int] = None):
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT

    def build_email(self, kind: EventKind, payload: Dict[str, Any]) -> OutgoingEmail:
        """Render the email for a notification event"""
        subject, html = TEMPLATES[kind](payload)
        if kind == EventKind.CONTACT_SUBMISSION:
            recipient = settings.MAIL_TO or settings.mail_sender
        else:
            recipient = payload.get("email")

        if not recipient or "@" not in recipient:
            raise ValueError(f"Invalid recipient for {kind.value} email: {recipient!r}")

        return OutgoingEmail(to=recipient, subject=subject, html=html, high_priority=kind in HIGH_PRIORITY)

    def send(self, message: OutgoingEmail) -> None:
        """Deliver over SMTP (implicit TLS)"""
        mime = MIMEMultipart("alternative")
        mime["Subject"] = message.subject
        mime["From"] = formataddr((settings.MAIL_FROM_NAME, settings.mail_sender))
        mime["To"] = message.to
        if message.high_priority:
            mime["X-Priority"] = "1"
            mime["Importance"] = "high"
        mime.attach(MIMEText(message.html, "html", "utf-8"))

        password = (settings.SMTP_PASSWORD or "").replace(" ", "")
        with smtplib.SMTP_SSL(self.host, self.port, timeout=settings.SMTP_TIMEOUT_SECONDS) as server:
            if settings.SMTP_USER:
                server.login(settings.SMTP_USER, password)
            server.sendmail(settings.mail_sender, [message.to], mime.as_string())

        logger.info(f"Sent '{message.subject}' to {message.to}")

    def deliver(self, kind: EventKind, payload: Dict[str, Any]) -> OutgoingEmail:
        message = self.build_email(kind, payload)
        self.send(message)
        return message

# Singleton instance
email_service = EmailService()
