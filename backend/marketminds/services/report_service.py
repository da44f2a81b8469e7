"""
Report Service - catalogue upload, listing, filtering and removal
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.database import utcnow, storage_guard
from ..core.exceptions import InvalidSubmissionError, NotFoundError
from ..models.report import Report, ReportType
from .blob_store import DatabaseBlobStore, StoredBlob
import logging

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "recent": Report.upload_date,
    "name": Report.title,
}


class ReportService:
    def __init__(self, db: Session, blob_store: Optional[DatabaseBlobStore] = None):
        self.db = db
        self.blobs = blob_store or DatabaseBlobStore(db)

    def upload(
        self,
        title: str,
        description: str,
        sector: str,
        report_type: str,
        file_name: str,
        content_type: str,
        data: bytes,
        upload_date: Optional[datetime] = None,
    ) -> Report:
        if not all([title, description, sector, report_type, file_name, content_type]) or not data:
            raise InvalidSubmissionError("All fields are required")

        try:
            kind = ReportType(report_type)
        except ValueError as e:
            raise InvalidSubmissionError("Invalid report type selected") from e

        max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
        if len(data) > max_bytes:
            raise InvalidSubmissionError(f"File exceeds {settings.MAX_UPLOAD_SIZE_MB} MB")

        with storage_guard(self.db):
            report = Report(
                title=title,
                description=description,
                sector=sector,
                report_type=kind.value,
                file_name=file_name,
                content_type=content_type,
                size_bytes=len(data),
                upload_date=upload_date or utcnow(),
            )
            self.db.add(report)
            self.db.flush()
            self.blobs.put(report.id, data, content_type, file_name)
            self.db.commit()

        logger.info(f"Uploaded {kind.value} report {report.id} '{title}' ({len(data)} bytes)")
        return report

    def get(self, report_id: int) -> Report:
        report = self.db.get(Report, report_id)
        if report is None:
            raise NotFoundError("Report", report_id)
        return report

    def get_file(self, report_id: int) -> StoredBlob:
        return self.blobs.get(report_id)

    def list_reports(self) -> List[Report]:
        return self.db.query(Report).order_by(Report.upload_date.desc(), Report.id.desc()).all()

    def filter_reports(
        self,
        search_term: Optional[str] = None,
        sector: Optional[str] = None,
        sort_by: Optional[str] = None,
        sort_order: str = "desc",
    ) -> List[Report]:
        query = self.db.query(Report)
        if search_term:
            pattern = f"%{search_term}%"
            query = query.filter(or_(Report.title.ilike(pattern), Report.description.ilike(pattern)))
        if sector and sector != "all":
            query = query.filter(Report.sector == sector)

        column = SORT_COLUMNS.get(sort_by or "")
        if column is not None:
            query = query.order_by(column.asc() if sort_order == "asc" else column.desc(), Report.id)
        else:
            query = query.order_by(Report.id)
        return query.all()

    def sectors(self) -> List[str]:
        rows = self.db.query(Report.sector).distinct().order_by(Report.sector).all()
        return [row.sector for row in rows]

    def delete(self, report_id: int) -> None:
        """Remove a report and its bytes; purchase records are kept."""
        with storage_guard(self.db):
            report = self.get(report_id)
            self.blobs.delete(report_id)
            self.db.delete(report)
            self.db.commit()
        logger.info(f"Deleted report {report_id}")
