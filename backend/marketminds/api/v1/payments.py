from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from ..dependencies import get_current_user, get_db, get_notifier, require_admin
from ..errors import call_with_storage_retry
from ...core.exceptions import MarketMindsError
from ...models.user import User
from ...schemas.payment import PaymentRequestCreate, PaymentRequestOut, ReviewRequest
from ...services.payment_workflow import PaymentWorkflowService
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment-requests", tags=["payments"])

@router.post("", response_model=PaymentRequestOut, status_code=201)
async def submit_payment_request(
    body: PaymentRequestCreate = Body(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    """Submit proof of payment for a report or a subscription plan"""
    try:
        workflow = PaymentWorkflowService(db, notifier)
        return call_with_storage_retry(
            workflow.submit, current_user.id, body.to_payload(), body.amount, body.screenshot_data
        )
    except MarketMindsError:
        raise
    except Exception as e:
        logger.error(f"Payment request submission failed for user {current_user.id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to submit payment request")

@router.get("", response_model=List[PaymentRequestOut])
async def list_payment_requests(
    status: Optional[str] = Query(None, pattern="^(pending|approved|rejected)$"),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return PaymentWorkflowService(db).list_all(status)

@router.post("/{request_id}/review", response_model=PaymentRequestOut)
async def review_payment_request(
    request_id: int,
    body: ReviewRequest,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    workflow = PaymentWorkflowService(db, notifier)
    return call_with_storage_retry(
        workflow.review, request_id, body.decision, body.admin_comment, admin.id
    )
