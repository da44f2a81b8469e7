# backend/marketminds/models/report.py
from sqlalchemy import Column, Integer, String, Text, DateTime, LargeBinary, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..core.database import Base
from .subscription import QuotaBucket
import enum

class ReportType(enum.Enum):
    FREE = "free"
    PREMIUM = "premium"
    BLUECHIP = "bluechip"

    @property
    def quota_bucket(self):
        """Subscription bucket charged for this report type; None for free."""
        return {
            ReportType.PREMIUM: QuotaBucket.PREMIUM,
            ReportType.BLUECHIP: QuotaBucket.BLUECHIP,
        }.get(self)

class Report(Base):
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    sector = Column(String, index=True, nullable=False)  # free-form
    report_type = Column(String, default=ReportType.PREMIUM.value, nullable=False)

    # File Metadata (bytes live in report_files)
    file_name = Column(String)
    content_type = Column(String)
    size_bytes = Column(Integer)

    upload_date = Column(DateTime, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    file = relationship("ReportFile", back_populates="report", uselist=False, cascade="all, delete-orphan")

    @property
    def type(self) -> ReportType:
        return ReportType(self.report_type or ReportType.PREMIUM.value)

    @property
    def is_free(self) -> bool:
        return self.type == ReportType.FREE

class ReportFile(Base):
    __tablename__ = "report_files"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(Integer, ForeignKey("reports.id", ondelete="CASCADE"), unique=True, nullable=False)

    data = Column(LargeBinary, nullable=False)
    content_type = Column(String, nullable=False)
    file_name = Column(String)
    size_bytes = Column(Integer)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    report = relationship("Report", back_populates="file")
