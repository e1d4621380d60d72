"""
Authentication API routes
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from .auth import (
    AUTH_COOKIE_NAME,
    create_session,
    get_auth_token,
    get_current_user,
    revoke_session,
    verify_password,
)
from .config import config
from .db import get_db
from .db.models import Organization, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["authentication"])


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    name: Optional[str] = None
    role: str
    organization_id: Optional[int] = None
    organization_slug: Optional[str] = None
    organization_name: Optional[str] = None


class LoginResponse(BaseModel):
    token: str
    user: UserResponse


def _user_response(db: Session, user: User) -> UserResponse:
    organization = db.get(Organization, user.organization_id) if user.organization_id else None
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        organization_id=user.organization_id,
        organization_slug=organization.slug if organization else None,
        organization_name=organization.name if organization else None,
    )


@router.post("/login", response_model=LoginResponse)
def login(credentials: UserLogin, response: Response, db: Session = Depends(get_db)):
    """Verify credentials, open a session and set the auth-token cookie"""
    user = db.query(User).filter(User.email == credentials.email.lower()).first()

    if user is None or not verify_password(credentials.password, user.hashed_password):
        logger.warning(f"Failed login for {credentials.email}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")

    token = create_session(db, user)
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=not (config.is_dev or config.is_test),
        samesite="lax",
        max_age=config.SESSION_EXPIRE_HOURS * 3600,
    )
    logger.info(f"User {user.id} logged in")
    return LoginResponse(token=token, user=_user_response(db, user))


@router.post("/logout")
def logout(
    response: Response,
    token: Optional[str] = Depends(get_auth_token),
    db: Session = Depends(get_db),
):
    if token:
        revoke_session(db, token)
    response.delete_cookie(AUTH_COOKIE_NAME)
    return {"success": True}


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _user_response(db, current_user)
