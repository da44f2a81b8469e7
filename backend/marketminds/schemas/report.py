# backend/marketminds/schemas/report.py
from pydantic import BaseModel, Field
from typing import Dict, Optional
from datetime import datetime

class ReportOut(BaseModel):
    id: int
    title: str
    description: str
    sector: str
    report_type: str
    upload_date: Optional[datetime] = None
    file_name: Optional[str] = None
    size_bytes: Optional[int] = None

    class Config:
        from_attributes = True

class AccessInfo(BaseModel):
    has_access: bool = Field(..., description="Whether the caller may read the report")
    access_type: Optional[str] = Field(None, description="free, individual or subscription")
    report_type: Optional[str] = Field(None, description="Quota bucket charged for subscription access")
    reason: Optional[str] = Field(None, description="Machine-readable deny reason")
    message: Optional[str] = Field(None, description="Human-readable deny reason")

class ReportDetail(ReportOut):
    is_free: bool
    user_access: AccessInfo

class UnlockResponse(BaseModel):
    message: str
    report: ReportOut
    remaining_reports: Dict[str, int] = Field(..., description="Remaining subscription balance")
