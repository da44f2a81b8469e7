from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
from ..dependencies import get_current_user, get_db, get_notifier, get_optional_user, require_admin
from ..errors import call_with_storage_retry
from ...core.exceptions import MarketMindsError
from ...models.user import User
from ...schemas.report import AccessInfo, ReportDetail, ReportOut, UnlockResponse
from ...services.access_service import AccessService
from ...services.report_service import ReportService
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])

def _file_response(db: Session, report_id: int, disposition: str, public: bool = False) -> Response:
    blob = ReportService(db).get_file(report_id)
    headers = {
        "Content-Disposition": f'{disposition}; filename="{blob.filename or f"report-{report_id}.pdf"}"',
        "Content-Length": str(blob.size),
    }
    if public:
        headers["Cache-Control"] = "public, max-age=3600"
    return Response(content=blob.data, media_type=blob.content_type, headers=headers)

@router.post("", response_model=ReportOut, status_code=201)
async def upload_report(
    title: str = Form(...),
    description: str = Form(...),
    sector: str = Form(...),
    report_type: str = Form("premium"),
    upload_date: Optional[datetime] = Form(None),
    file: UploadFile = File(...),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Upload a report PDF (admin only)"""
    try:
        data = await file.read()
        return call_with_storage_retry(
            ReportService(db).upload,
            title, description, sector, report_type,
            file.filename, file.content_type, data, upload_date,
        )
    except MarketMindsError:
        raise
    except Exception as e:
        logger.error(f"Report upload failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to upload report")

@router.get("", response_model=List[ReportOut])
async def list_reports(db: Session = Depends(get_db)):
    return ReportService(db).list_reports()

@router.get("/filtered", response_model=List[ReportOut])
async def filter_reports(
    search_term: Optional[str] = Query(None, description="Matches title or description"),
    sector: Optional[str] = Query(None, description="Sector name, or 'all'"),
    sort_by: Optional[str] = Query(None, pattern="^(recent|name)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db)
):
    return ReportService(db).filter_reports(search_term, sector, sort_by, sort_order)

@router.get("/sectors", response_model=List[str])
async def list_sectors(db: Session = Depends(get_db)):
    return ReportService(db).sectors()

@router.get("/{report_id}", response_model=ReportDetail)
async def get_report(
    report_id: int,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    """Report metadata plus the caller's access to it"""
    report = ReportService(db).get(report_id)
    decision = AccessService(db).check_access(current_user.id if current_user else None, report_id)
    return ReportDetail(
        **ReportOut.model_validate(report).model_dump(),
        is_free=report.is_free,
        user_access=AccessInfo(**decision.to_dict()),
    )

@router.post("/{report_id}/use-subscription", response_model=UnlockResponse)
async def use_subscription(
    report_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    """Add a report to the library, charged to the subscription quota"""
    remaining = call_with_storage_retry(AccessService(db, notifier).unlock_report, current_user.id, report_id)
    return UnlockResponse(
        message="Report added successfully",
        report=ReportOut.model_validate(ReportService(db).get(report_id)),
        remaining_reports=remaining,
    )

@router.get("/{report_id}/pdf")
async def view_report_pdf(
    report_id: int,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    """Serve the PDF inline; subscription access is charged before any bytes are sent"""
    report = call_with_storage_retry(
        AccessService(db, notifier).authorize_report_file,
        current_user.id if current_user else None, report_id,
    )
    return _file_response(db, report_id, "inline", public=report.is_free)

@router.get("/{report_id}/download")
async def download_report_pdf(
    report_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    call_with_storage_retry(AccessService(db, notifier).authorize_report_file, current_user.id, report_id)
    return _file_response(db, report_id, "attachment")

@router.delete("/{report_id}")
async def delete_report(
    report_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    call_with_storage_retry(ReportService(db).delete, report_id)
    return {"message": "Report deleted successfully"}
