from datetime import datetime, timedelta, timezone
from typing import Optional
import jwt
from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer

from dropline.core.config import settings
from dropline.core.guards import ensure_role
from dropline.models.order import Principal

# tokens are issued by the identity service; tokenUrl only feeds the OpenAPI docs
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


def create_token(sub: str, role: str, email: Optional[str] = None, minutes: Optional[int] = None) -> str:
    """Dev/test helper. Production tokens come from the identity service."""
    payload = {"sub": sub, "role": role}
    if email:
        payload["email"] = email
    payload["exp"] = datetime.now(timezone.utc) + timedelta(minutes=minutes or settings.access_ttl_min)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_alg)

def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_alg])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

def principal_from_token(token: str) -> Principal:
    data = decode_token(token)
    sub, role = data.get("sub"), data.get("role")
    if not sub or role not in ("customer", "partner", "admin"):
        raise HTTPException(status_code=401, detail="Token carries no usable principal")
    return Principal(id=str(sub), role=role, email=data.get("email"))

async def get_current_principal(token: str = Depends(oauth2_scheme)) -> Principal:
    return principal_from_token(token)

def require_role(*roles: str):
    async def checker(principal: Principal = Depends(get_current_principal)):
        ensure_role(principal, *roles)
        return principal
    return checker
