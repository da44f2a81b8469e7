# backend/marketminds/services/contact_service.py
from typing import Optional
from sqlalchemy.orm import Session
from ..core.database import storage_guard
from ..core.events import EventKind
from ..core.exceptions import InvalidSubmissionError
from ..models.contact import Contact
from .notification_service import notification_service
import logging

logger = logging.getLogger(__name__)

class ContactService:
    def __init__(self, db: Session, notifier=None):
        self.db = db
        self.notifier = notifier or notification_service

    def submit(
        self,
        name: str,
        email: str,
        message: str,
        phone: Optional[str] = None,
        country: Optional[str] = None,
        subject: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> Contact:
        """Persist a contact form message and forward it to the admin inbox"""
        if not (name or "").strip() or not (email or "").strip() or not (message or "").strip():
            raise InvalidSubmissionError("Name, email and message are required")

        with storage_guard(self.db):
            contact = Contact(
                user_id=user_id,
                name=name.strip(),
                email=email.strip(),
                phone=phone,
                country=country,
                subject=subject,
                message=message.strip(),
            )
            self.db.add(contact)
            self.db.commit()

        logger.info(f"Contact message {contact.id} received from {contact.email}")
        self.notifier.emit(EventKind.CONTACT_SUBMISSION, {
            "name": contact.name,
            "email": contact.email,
            "phone": contact.phone,
            "country": contact.country,
            "subject": contact.subject,
            "message": contact.message,
        })
        return contact
