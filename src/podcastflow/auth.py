"""
Authentication utilities: password hashing, JWT session tokens and user dependencies
"""
import os
import hashlib
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import config
from .db import get_db
from .db.models import Session as UserSession, User

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
AUTH_COOKIE_NAME = "auth-token"

# Each increment doubles hashing time; tests lower this
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)
http_bearer = HTTPBearer(auto_error=False)


def _prepare_password(password: str) -> bytes:
    # bcrypt only reads 72 bytes; longer passwords are pre-hashed with SHA256
    password_bytes = password.encode("utf-8")
    if len(password_bytes) > 72:
        password_bytes = hashlib.sha256(password_bytes).hexdigest().encode("utf-8")
    return password_bytes


def get_password_hash(password: str) -> str:
    """Hash a password, handling bcrypt's 72-byte limit"""
    if not password:
        raise ValueError("Password cannot be empty")
    return bcrypt.hashpw(_prepare_password(password), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    if not plain_password or not hashed_password:
        return False

    prepared = _prepare_password(plain_password)
    try:
        return pwd_context.verify(prepared.decode("utf-8"), hashed_password)
    except Exception:
        # passlib cannot load every bcrypt release; check with bcrypt directly
        try:
            return bcrypt.checkpw(prepared, hashed_password.encode("utf-8"))
        except ValueError as e:
            logger.warning(f"Password verification failed: {type(e).__name__}")
            return False


def hash_token(token: str) -> str:
    """Sessions store only the SHA256 of the issued token"""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token

    Args:
        data: Claims; must include 'sub' (user ID)
        expires_delta: Optional custom lifetime (default SESSION_EXPIRE_HOURS)

    Returns:
        Encoded JWT token string
    """
    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(hours=config.SESSION_EXPIRE_HOURS))

    to_encode = data.copy()
    to_encode.update({
        "exp": expire,
        "iat": now,
        "jti": str(uuid.uuid4()),
    })
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """Verify and decode a JWT token"""
    try:
        return jwt.decode(token, config.SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.warning("Token verification failed: Token has expired")
        return None
    except JWTError as e:
        logger.warning(f"Token verification failed: {type(e).__name__} - {str(e)}")
        return None


def create_session(db: Session, user: User) -> str:
    """
    Issue a token for a user and persist its session row

    Returns:
        The raw token (never stored)
    """
    expires_delta = timedelta(hours=config.SESSION_EXPIRE_HOURS)
    token = create_access_token({"sub": str(user.id), "org": user.organization_id}, expires_delta)

    db.add(UserSession(
        user_id=user.id,
        token_hash=hash_token(token),
        expires_at=datetime.utcnow() + expires_delta,
    ))
    user.last_login_at = datetime.utcnow()
    db.commit()
    return token


def validate_session(db: Session, token: str) -> Optional[User]:
    """
    Resolve a token to its user

    The JWT must verify and an unexpired session row must exist for it.
    """
    if not token:
        return None

    payload = verify_token(token)
    if payload is None or payload.get("sub") is None:
        return None

    session = db.query(UserSession).filter(
        UserSession.token_hash == hash_token(token),
        UserSession.expires_at > datetime.utcnow(),
    ).first()
    if session is None:
        logger.info("Session not found or expired")
        return None

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        return None
    if session.user_id != user_id:
        logger.warning(f"Session user mismatch for token subject {user_id}")
        return None

    return db.query(User).filter(User.id == user_id).first()


def revoke_session(db: Session, token: str) -> bool:
    deleted = db.query(UserSession).filter(UserSession.token_hash == hash_token(token)).delete()
    db.commit()
    return deleted > 0


def get_auth_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> Optional[str]:
    """
    Extract the session token from the auth-token cookie, falling back to
    an Authorization: Bearer header. Returns None if neither is present.
    """
    cookie_token = request.cookies.get(AUTH_COOKIE_NAME)
    if cookie_token:
        return cookie_token
    if credentials and credentials.credentials:
        return credentials.credentials
    return None


def get_current_user(
    token: Optional[str] = Depends(get_auth_token),
    db: Session = Depends(get_db),
) -> User:
    """FastAPI dependency returning the authenticated, active user"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        raise credentials_exception

    user = validate_session(db, token)
    if user is None or not user.is_active:
        raise credentials_exception
    return user
