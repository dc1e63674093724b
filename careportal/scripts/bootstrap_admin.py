from __future__ import annotations

import argparse
import asyncio
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from careportal.core.config import settings
from careportal.core.security import hash_password
from careportal.db.models import AdminLevelEnum, Principal
from careportal.db.session import AsyncSessionLocal, engine


# ---------- helpers ----------
async def _get_principal_by_email(db: AsyncSession, email: str) -> Optional[Principal]:
    res = await db.execute(select(Principal).where(Principal.email == email))
    return res.scalar_one_or_none()


async def ensure_platform_admin(
    db: AsyncSession,
    *,
    email: str,
    password_plain: Optional[str],
    name: Optional[str],
    admin_level: AdminLevelEnum = AdminLevelEnum.super_admin,
) -> Principal:
    """
    Creates the principal when missing (password required), otherwise
    promotes and reactivates it. An existing password is never touched.
    """
    email = email.strip().lower()
    p = await _get_principal_by_email(db, email)

    if p is None:
        if not password_plain:
            raise ValueError(f"No password given for new principal {email}")
        p = Principal(
            email=email,
            password_hash=hash_password(password_plain),
            display_name=name,
            is_platform_admin=True,
            admin_level=admin_level,
            is_active=True,
        )
        db.add(p)
        await db.commit()
        await db.refresh(p)
        print(f"[bootstrap] created platform admin: {email} ({admin_level.value})")
        return p

    changed = False
    if not p.is_platform_admin or p.admin_level != admin_level:
        p.is_platform_admin = True
        p.admin_level = admin_level
        changed = True
    if name and name != p.display_name:
        p.display_name = name
        changed = True
    if not p.is_active:
        p.is_active = True
        changed = True

    if changed:
        await db.commit()
        print(f"[bootstrap] updated: {email}")
    else:
        print(f"[bootstrap] unchanged: {email}")
    return p


async def _run(*, email: str, password: str, name: Optional[str], level: AdminLevelEnum) -> None:
    async with AsyncSessionLocal() as db:
        await ensure_platform_admin(db, email=email, password_plain=password, name=name, admin_level=level)
    await engine.dispose()
    print("[bootstrap] done")


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Provision the first platform administrator")
    p.add_argument("email", nargs="?", default=settings.admin_email, help="Admin email")
    p.add_argument("password", nargs="?", default=settings.admin_password, help="Admin password")
    p.add_argument("-n", "--name", default=settings.admin_name, help="Display name")
    p.add_argument(
        "--level",
        choices=[lvl.value for lvl in AdminLevelEnum],
        default=AdminLevelEnum.super_admin.value,
        help="Platform admin level",
    )
    return p.parse_args()


def main() -> None:
    args = _parse_args()

    if not args.email:
        raise SystemExit("Error: admin email missing (argument or ADMIN_EMAIL in .env)")
    if not args.password:
        raise SystemExit("Error: admin password missing (argument or ADMIN_PASSWORD in .env)")

    asyncio.run(_run(email=args.email, password=args.password, name=args.name, level=AdminLevelEnum(args.level)))


if __name__ == "__main__":
    main()
