# backend/marketminds/api/dependencies.py
from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from ..core.database import get_db
from ..core.exceptions import AuthenticationError, AuthorizationError
from ..core.security import verify_token
from ..models.user import User
from ..services.notification_service import get_notifier

security = HTTPBearer(auto_error=False)

def _strip_bearer(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip()
    if value.lower().startswith("bearer "):
        value = value[7:].strip()
    return value or None

def extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    """Bearer header first, then the ``token`` query parameter, then the ``authToken`` cookie"""
    if credentials and credentials.credentials:
        return credentials.credentials
    return (
        _strip_bearer(request.query_params.get("token"))
        or _strip_bearer(request.cookies.get("authToken"))
    )

async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user"""
    token = extract_token(request, credentials)
    if not token:
        raise AuthenticationError("Access denied")

    user = db.get(User, verify_token(token))
    if user is None:
        raise AuthenticationError("User not found")
    return user

async def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> Optional[User]:
    """Authenticated user, or None for anonymous callers and unusable tokens"""
    token = extract_token(request, credentials)
    if not token:
        return None
    try:
        user_id = verify_token(token)
    except AuthenticationError:
        return None
    return db.get(User, user_id)

async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise AuthorizationError()
    return current_user

__all__ = ["get_db", "get_notifier", "get_current_user", "get_optional_user", "require_admin", "extract_token"]
