# backend/marketminds/services/blob_store.py
from dataclasses import dataclass
from typing import Optional
from sqlalchemy.orm import Session
from ..core.exceptions import NotFoundError
from ..models.report import ReportFile
import logging

logger = logging.getLogger(__name__)

@dataclass
class StoredBlob:
    data: bytes
    content_type: str
    filename: Optional[str]
    size: int

class DatabaseBlobStore:
    """Report PDF bytes, stored as-is in the report_files table."""

    def __init__(self, db: Session):
        self.db = db

    def _row(self, report_id: int) -> Optional[ReportFile]:
        return self.db.query(ReportFile).filter(ReportFile.report_id == report_id).first()

    def put(self, report_id: int, data: bytes, content_type: str, filename: Optional[str] = None) -> StoredBlob:
        """Store or replace the bytes for a report; the caller commits."""
        row = self._row(report_id)
        if row is None:
            row = ReportFile(report_id=report_id)
            self.db.add(row)
        row.data = data
        row.content_type = content_type
        row.file_name = filename
        row.size_bytes = len(data)
        self.db.flush()
        logger.info(f"Stored {len(data)} bytes for report {report_id}")
        return StoredBlob(data=data, content_type=content_type, filename=filename, size=len(data))

    def get(self, report_id: int) -> StoredBlob:
        row = self._row(report_id)
        if row is None:
            raise NotFoundError("Report file", report_id)
        return StoredBlob(
            data=row.data,
            content_type=row.content_type,
            filename=row.file_name,
            size=row.size_bytes if row.size_bytes is not None else len(row.data),
        )

    def delete(self, report_id: int) -> bool:
        row = self._row(report_id)
        if row is None:
            return False
        self.db.delete(row)
        self.db.flush()
        return True
