# backend/marketminds/models/contact.py
from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func
from ..core.database import Base

class Contact(Base):
    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)  # anonymous allowed

    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    phone = Column(String)
    country = Column(String)
    subject = Column(String)
    message = Column(Text, nullable=False)

    is_read = Column(Boolean, default=False, nullable=False)
    submitted_at = Column(DateTime(timezone=True), server_default=func.now())
