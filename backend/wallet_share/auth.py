"""Operator authentication.

Tokens are issued by the upstream identity service and carry the
operator's email (``sub``) and tenant. This module verifies them,
resolves the operator and refuses operators of suspended tenants.
"""

from datetime import timedelta
from typing import Any, Dict, Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import logging

from wallet_share.config import settings
from wallet_share.database import get_db
from wallet_share.models import Tenant, User
from wallet_share.utils.dates import utcnow

logger = logging.getLogger(__name__)
security = HTTPBearer()

ACTIVE_TENANT_STATUSES = ("active", "trial")


def create_access_token(email: str, tenant_id, expires_delta: Optional[timedelta] = None) -> str:
    """Sign an operator token (used by the seed script and tests)."""
    now = utcnow()
    claims = {
        "sub": email,
        "tenant_id": str(tenant_id),
        "iat": now,
        "exp": now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)),
        "type": "access",
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Claims of a valid access token; raises JWTError otherwise."""
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    if payload.get("type") != "access" or not payload.get("sub") or not payload.get("tenant_id"):
        raise JWTError("Token is missing operator claims")
    return payload


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Resolve the operator named by the bearer token."""
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        claims = decode_access_token(credentials.credentials)
    except JWTError as e:
        logger.warning(f"Rejected operator token: {e}")
        raise unauthorized

    result = await db.execute(
        select(User, Tenant.status)
        .join(Tenant, Tenant.id == User.tenant_id)
        .where(User.email == claims["sub"], User.is_active == True)
    )
    row = result.first()
    if row is None or str(row[0].tenant_id) != claims["tenant_id"]:
        raise unauthorized

    user, tenant_status = row
    if tenant_status not in ACTIVE_TENANT_STATUSES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant is suspended")

    return user


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Tier, settings and profile approval changes are admin-only."""
    if current_user.role != "admin":
        logger.warning(f"Admin access denied for {current_user.email}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
    return current_user
