from __future__ import annotations
from datetime import datetime, timedelta
from typing import Optional
from jose import jwt, JWTError

from .errors import InvalidTokenError
from .models import utcnow

READ = "read"
WRITE = "write"


class TokenSigner:
    """Short-lived signed tokens granting read or write on one blob key."""

    def __init__(self, secret: str, algorithm: str = "HS256", expiry_seconds: int = 3600) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.expiry_seconds = expiry_seconds

    def issue(self, key: str, op: str, reservation_id: Optional[str] = None,
              now: Optional[datetime] = None) -> str:
        now = now or utcnow()
        claims = {
            "key": key,
            "op": op,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.expiry_seconds)).timestamp()),
        }
        if reservation_id:
            claims["rid"] = reservation_id
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: str, key: str, op: str) -> dict:
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError:
            raise InvalidTokenError("Invalid or expired token")
        if claims.get("op") != op or claims.get("key") != key:
            raise InvalidTokenError("Invalid token")
        return claims
