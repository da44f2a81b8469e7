# backend/marketminds/schemas/contact.py
from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime

class ContactCreate(BaseModel):
    name: str = Field(..., description="Sender's name")
    email: EmailStr
    phone: Optional[str] = None
    country: Optional[str] = None
    subject: Optional[str] = None
    message: str = Field(..., description="Message body")

class ContactOut(BaseModel):
    id: int
    user_id: Optional[int] = None
    name: str
    email: str
    phone: Optional[str] = None
    country: Optional[str] = None
    subject: Optional[str] = None
    message: str
    is_read: bool = False
    submitted_at: Optional[datetime] = None

    class Config:
        from_attributes = True
