from passlib.context import CryptContext
from jose import jwt, JWTError
from datetime import datetime, timedelta, timezone
from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from typing import Optional
import hashlib
import secrets
import os

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
SECRET_KEY = os.getenv("JWT_SECRET", "your-fallback-secret")
ALGORITHM = "HS256"
TOKEN_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
RESET_TOKEN_TTL = timedelta(hours=1)

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    id: str
    user_type: str

    @property
    def is_doctor(self) -> bool:
        return self.user_type == "doctor"

    @property
    def is_patient(self) -> bool:
        return self.user_type == "patient"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)

def create_access_token(data: dict):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(hours=TOKEN_EXPIRE_HOURS)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

def new_reset_token():
    """Return (token, sha256 hex digest, expiry). Only the digest is stored."""
    token = secrets.token_urlsafe(32)
    return token, hash_reset_token(token), datetime.utcnow() + RESET_TOKEN_TTL

def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def decode_token(token: str) -> Optional[CurrentUser]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("sub")
    user_type = payload.get("user_type")
    if user_id is None or user_type is None:
        return None
    return CurrentUser(id=user_id, user_type=user_type)


# ==================== AUTH DEPENDENCIES ====================

async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> CurrentUser:
    """Verify JWT token and return the caller"""
    user = decode_token(credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials"
        )
    return user


async def get_optional_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security)) -> Optional[CurrentUser]:
    """Verify JWT token and return the caller (optional)"""
    if credentials is None:
        return None
    return decode_token(credentials.credentials)


async def get_stream_user(
    token: Optional[str] = Query(default=None),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
) -> CurrentUser:
    """EventSource clients cannot set headers, so the token may come as ?token="""
    raw = credentials.credentials if credentials else token
    user = decode_token(raw) if raw else None
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials"
        )
    return user


async def require_patient(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_patient:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only patients can perform this action"
        )
    return user


async def require_doctor(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_doctor:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only doctors can perform this action"
        )
    return user
