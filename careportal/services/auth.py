# careportal/services/auth.py
from __future__ import annotations
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from careportal.core.config import settings
from careportal.core.security import verify_password, create_access_token
from careportal.db.models import Principal


async def get_principal_by_email(db: AsyncSession, email: str) -> Optional[Principal]:
    res = await db.execute(select(Principal).where(Principal.email == email.strip().lower()))
    return res.scalar_one_or_none()


async def authenticate(db: AsyncSession, *, email: str, password: str) -> Optional[Principal]:
    """None for unknown email, wrong password or a deactivated principal."""
    principal = await get_principal_by_email(db, email)
    if not principal or not principal.is_active:
        return None
    if not principal.password_hash or not verify_password(password, principal.password_hash):
        return None
    return principal


def serialize_principal(p: Principal) -> dict:
    return {
        "id": p.id,
        "email": p.email,
        "display_name": p.display_name,
        "is_platform_admin": bool(p.is_platform_admin),
        "admin_level": getattr(p.admin_level, "value", p.admin_level),
        "is_active": p.is_active,
    }


def make_token_for_principal(p: Principal, *, remember_me: bool = False) -> str:
    """
    Access token for ``p``. remember_me=True uses the longer
    jwt_remember_expires_min lifetime.
    """
    minutes = settings.jwt_remember_expires_min if remember_me else settings.jwt_expires_min
    return create_access_token(
        subject=str(p.id),
        secret=settings.jwt_secret,
        algorithm=settings.jwt_alg,
        expires_minutes=minutes,
    )
