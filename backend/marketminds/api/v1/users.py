from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from ..dependencies import get_current_user, get_db
from ...models.user import User
from ...schemas.payment import PaymentRequestOut
from ...schemas.report import AccessInfo
from ...services.access_service import AccessService
from ...services.payment_workflow import PaymentWorkflowService
from ...services.user_service import UserService

router = APIRouter(prefix="/users", tags=["users"])

@router.get("/me/dashboard")
async def get_dashboard(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Profile, subscription status, library, pending requests and stats"""
    dashboard = UserService(db).dashboard(current_user)
    dashboard["pending_requests"] = [
        PaymentRequestOut.model_validate(r) for r in dashboard["pending_requests"]
    ]
    return dashboard

@router.get("/me/subscription")
async def get_subscription_status(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return UserService(db).subscription_status(current_user)

@router.get("/me/purchased-reports")
async def get_purchased_reports(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return UserService(db).purchased_reports(current_user)

@router.get("/me/payment-requests", response_model=List[PaymentRequestOut])
async def get_my_payment_requests(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return PaymentWorkflowService(db).list_for_user(current_user.id)

@router.get("/me/check-access/{report_id}", response_model=AccessInfo)
async def check_report_access(
    report_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return AccessService(db).check_access(current_user.id, report_id).to_dict()
