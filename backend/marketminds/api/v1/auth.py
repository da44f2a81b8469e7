from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from ..dependencies import get_db, get_notifier
from ..errors import call_with_storage_retry
from ...core.exceptions import MarketMindsError
from ...schemas.user import (
    ForgotPasswordRequest,
    ResetPasswordRequest,
    SigninRequest,
    SignupRequest,
    TokenResponse,
    UserOut,
)
from ...services.user_service import UserService
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])

@router.post("/signup", response_model=UserOut, status_code=201)
async def signup(
    body: SignupRequest,
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    """Create an account and send the welcome email"""
    try:
        service = UserService(db, notifier)
        return call_with_storage_retry(
            service.signup, body.first_name, body.last_name, body.email, body.password
        )
    except MarketMindsError:
        raise
    except Exception as e:
        logger.error(f"Signup failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to create account")

@router.post("/signin", response_model=TokenResponse)
async def signin(body: SigninRequest, db: Session = Depends(get_db)):
    result = UserService(db).signin(body.email, body.password)
    return TokenResponse(
        access_token=result["access_token"],
        token_type=result["token_type"],
        user=UserOut.model_validate(result["user"]),
    )

@router.post("/forgot-password")
async def forgot_password(
    body: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    """Email a one-time reset code; the response never reveals whether the email exists"""
    call_with_storage_retry(UserService(db, notifier).request_password_reset, body.email)
    return {"message": "If an account exists for this email, a reset code has been sent"}

@router.post("/reset-password")
async def reset_password(
    body: ResetPasswordRequest,
    db: Session = Depends(get_db),
    notifier=Depends(get_notifier)
):
    call_with_storage_retry(
        UserService(db, notifier).reset_password, body.email, body.otp, body.new_password
    )
    return {"message": "Password reset successfully"}
