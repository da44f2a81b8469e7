from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session
from typing import List, Optional
from ..dependencies import get_db, get_notifier, require_admin
from ..errors import call_with_storage_retry
from ...models.user import User
from ...schemas.contact import ContactOut
from ...schemas.payment import AdminDecision, AdminGrantCreate, PaymentRequestOut
from ...services.admin_service import AdminService
from ...services.payment_workflow import PaymentWorkflowService, ReviewDecision
from ...services.subscription_sweep import run_expiry_sweep
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

@router.get("/dashboard")
async def get_admin_dashboard(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    dashboard = AdminService(db).dashboard()
    dashboard["recent_requests"] = [
        PaymentRequestOut.model_validate(r) for r in dashboard["recent_requests"]
    ]
    return dashboard

@router.get("/users")
async def list_users(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """All users with purchased reports and payment requests resolved"""
    return AdminService(db).list_users()

@router.get("/contacts", response_model=List[ContactOut])
async def list_contacts(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return AdminService(db).list_contacts()

@router.patch("/payment-requests/{request_id}/approve", response_model=PaymentRequestOut)
async def approve_payment_request(
    request_id: int,
    body: Optional[AdminDecision] = Body(None),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    workflow = PaymentWorkflowService(db, notifier)
    return call_with_storage_retry(
        workflow.review, request_id, ReviewDecision.APPROVED, body.admin_comment if body else None, admin.id
    )

@router.patch("/payment-requests/{request_id}/reject", response_model=PaymentRequestOut)
async def reject_payment_request(
    request_id: int,
    body: Optional[AdminDecision] = Body(None),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    workflow = PaymentWorkflowService(db, notifier)
    return call_with_storage_retry(
        workflow.review, request_id, ReviewDecision.REJECTED, body.admin_comment if body else None, admin.id
    )

@router.post("/payment-requests/{request_id}/notify")
async def resend_decision_email(
    request_id: int,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    """Queue the approval or rejection email again"""
    queued = PaymentWorkflowService(db, notifier).resend_decision_notification(request_id)
    return {"message": "Notification queued" if queued else "Notification could not be queued",
            "notification_sent": queued}

@router.post("/grant-access", response_model=PaymentRequestOut, status_code=201)
async def grant_access(
    body: AdminGrantCreate = Body(...),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    """Open a pending request for a user whose payment was verified out of band"""
    workflow = PaymentWorkflowService(db, notifier)
    return call_with_storage_retry(
        workflow.grant_by_admin, admin.id, body.user_id, body.to_payload(), body.amount, body.screenshot_data
    )

@router.post("/subscriptions/sweep")
async def trigger_subscription_sweep(
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    """Run grant reconciliation and the expiry sweep now"""
    logger.info(f"Admin {admin.id} triggered the subscription sweep")
    reconciled = PaymentWorkflowService(db, notifier).reconcile_ungranted()
    summary = run_expiry_sweep(db, notifier).to_dict()
    summary["reconciled"] = reconciled
    return summary
