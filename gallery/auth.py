from __future__ import annotations
from datetime import timedelta
from functools import lru_cache
from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException
from jose import jwt, JWTError
from passlib.hash import bcrypt_sha256
from pydantic import BaseModel

from .config import Settings, get_settings
from .models import utcnow
from .signing import TokenSigner


@lru_cache
def _password_hash(password: str, password_hash: Optional[str]) -> str:
    # plain development password gets hashed once per process
    return password_hash or bcrypt_sha256.hash(password)

def verify_password(p: str, settings: Settings) -> bool:
    if not p:
        return False
    return bcrypt_sha256.verify(p, _password_hash(settings.password, settings.password_hash))

def create_access_token(sub: str, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    now = utcnow()
    expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode = {"sub": sub, "iat": int(now.timestamp()), "exp": expire}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)

def get_signer(settings: Settings = Depends(get_settings)) -> TokenSigner:
    return TokenSigner(settings.secret_key, settings.algorithm, settings.signed_url_expiry_seconds)

# ===== Schemas =====
class VerifyIn(BaseModel):
    password: str
    user: str

class TokenOut(BaseModel):
    ok: bool = True
    access_token: str
    token_type: str = "bearer"
    user: str

# ===== Router =====
router = APIRouter(prefix="/api/auth", tags=["auth"])

@router.post("/verify", response_model=TokenOut)
def verify(payload: VerifyIn, settings: Settings = Depends(get_settings)):
    if payload.user not in settings.users:
        raise HTTPException(status_code=400, detail="unknown_user")
    if not verify_password(payload.password, settings):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return TokenOut(access_token=create_access_token(payload.user, settings), user=payload.user)

# ===== dependency to protect routes =====
def current_user(authorization: Optional[str] = Header(None), settings: Settings = Depends(get_settings)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="missing_token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        user = payload.get("sub") or ""
    except JWTError:
        raise HTTPException(status_code=401, detail="invalid_token")
    if user not in settings.users:
        raise HTTPException(status_code=401, detail="inactive_user")
    return user

@router.get("/me")
def me(user: str = Depends(current_user)):
    return {"ok": True, "user": user}
