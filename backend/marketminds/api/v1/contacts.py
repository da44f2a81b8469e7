from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional
from ..dependencies import get_db, get_notifier, get_optional_user
from ..errors import call_with_storage_retry
from ...models.user import User
from ...schemas.contact import ContactCreate
from ...services.contact_service import ContactService

router = APIRouter(prefix="/contacts", tags=["contacts"])

@router.post("", status_code=201)
async def submit_contact(
    body: ContactCreate,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    """Store a contact form message and forward it to the admin inbox"""
    call_with_storage_retry(
        ContactService(db, notifier).submit,
        body.name, body.email, body.message,
        phone=body.phone, country=body.country, subject=body.subject,
        user_id=current_user.id if current_user else None,
    )
    return {"message": "Message sent successfully"}
