# Authentication, authorization and request hardening helpers

import asyncio
import hashlib
import logging
import secrets
import uuid
from datetime import timedelta
from typing import Dict, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from .config import JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRE_HOURS, now_utc
from .db import get_db, executor
from .models import UserResponse

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)
limiter = Limiter(key_func=get_remote_address)

TOKEN_COOKIE = "token"

# ---------------------------------------------------------------------------
# Security Headers Middleware
# ---------------------------------------------------------------------------
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(self), camera=(self), microphone=()"
        return response

# ---------------------------------------------------------------------------
# Passwords & tokens
# ---------------------------------------------------------------------------
def hash_password(password: str) -> str:
    if len(password.encode("utf-8")) > 72:
        raise ValueError("Password cannot exceed 72 bytes")
    return pwd_context.hash(password)

def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)

def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    to_encode["exp"] = now_utc() + timedelta(hours=JWT_EXPIRE_HOURS)
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)

def token_for(user: dict) -> str:
    return create_access_token({"sub": str(user["_id"]), "role": user["role"]})

def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()

def generate_reset_token() -> tuple:
    """Returns (raw token for the email link, sha256 digest to store)."""
    raw = secrets.token_hex(20)
    return raw, hash_token(raw)

MAX_REVOKED_TOKENS = 10000

# token -> exp (epoch seconds)
_token_blacklist: Dict[str, float] = {}

def _token_expiry(token: str) -> float:
    try:
        return float(jwt.get_unverified_claims(token).get("exp", 0))
    except (JWTError, TypeError, ValueError):
        return 0.0

def revoke_token(token: str) -> None:
    _token_blacklist[token] = _token_expiry(token)
    if len(_token_blacklist) <= MAX_REVOKED_TOKENS:
        return
    # Expired tokens are rejected by jwt.decode anyway
    now = now_utc().timestamp()
    for t in [t for t, exp in _token_blacklist.items() if exp <= now]:
        del _token_blacklist[t]
    # Still full: drop the entries closest to expiry
    overflow = len(_token_blacklist) - MAX_REVOKED_TOKENS
    if overflow > 0:
        for t in sorted(_token_blacklist, key=_token_blacklist.get)[:overflow]:
            del _token_blacklist[t]

def decode_token(token: str) -> str:
    """Return the user id carried by a token or raise HTTPException(401)."""
    if token in _token_blacklist:
        raise HTTPException(status_code=401, detail="Token has been revoked")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id

def request_token(request: Request, bearer: Optional[str]) -> Optional[str]:
    return bearer or request.cookies.get(TOKEN_COOKIE)

# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
async def get_current_user(request: Request, bearer: Optional[str] = Depends(oauth2_scheme),
                           db=Depends(get_db)):
    token = request_token(request, bearer)
    if token is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user_id = decode_token(token)
    loop = asyncio.get_event_loop()
    user = await loop.run_in_executor(executor, db.users.find_one, {"_id": user_id})
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Account has been deactivated")
    return user

def require_role(*roles):
    async def role_checker(user=Depends(get_current_user)):
        if user["role"] not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user
    return role_checker

def user_to_response(user: dict) -> UserResponse:
    return UserResponse(
        id=str(user["_id"]), name=user["name"], email=user["email"],
        phone=user.get("phone"), role=user["role"],
        department=user.get("department"), employee_id=user.get("employee_id"),
        address=user.get("address"), zone=user.get("zone"),
        assigned_officer=user.get("assigned_officer"),
        is_active=user.get("is_active", True), phone_verified=user.get("phone_verified", False),
        preferred_language=user.get("preferred_language", "en"),
        last_login=user.get("last_login"), created_at=user["created_at"])

# ---------------------------------------------------------------------------
# Input Sanitization Helpers
# ---------------------------------------------------------------------------
def sanitize_str(value: str) -> str:
    """Ensure a value is a plain string, not a dict/list that could be a NoSQL operator."""
    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail="Invalid parameter type")
    return str(value)

def validate_uuid(value: str, param_name: str = "id") -> str:
    """Validate that a string is a valid UUID format."""
    value = sanitize_str(value)
    try:
        uuid.UUID(value)
    except (ValueError, AttributeError):
        raise HTTPException(status_code=400, detail=f"Invalid {param_name} format")
    return value
