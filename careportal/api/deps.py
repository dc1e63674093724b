from __future__ import annotations

from typing import Annotated

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer

from sqlalchemy.ext.asyncio import AsyncSession

from careportal.core.config import settings
from careportal.core.errors import Unauthorized
from careportal.core.security import decode_token
from careportal.db.models import Principal
from careportal.db.session import get_session
from careportal.services.scope import AccessScope, load_access_scope
from careportal.services.summarizer import OpenAISummarizer, Summarizer

# OAuth2 bearer (for /api/docs). Routes live under /api, hence the full path.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

# DB session dependency
DBDep = Annotated[AsyncSession, Depends(get_session)]


async def get_current_principal(
    db: DBDep,
    token: Annotated[str | None, Depends(oauth2_scheme)],
) -> Principal:
    """
    Decodes the bearer JWT, loads the principal and checks it is active.
    """
    if not token:
        raise Unauthorized("Not authenticated")
    try:
        payload = decode_token(token, settings.jwt_secret, settings.jwt_alg)
        principal_id = int(payload["sub"])
    except (ValueError, KeyError, TypeError):
        raise Unauthorized("Invalid or expired token")

    principal = await db.get(Principal, principal_id)
    if not principal or not principal.is_active:
        raise Unauthorized("User inactive or not found")
    return principal


PrincipalDep = Annotated[Principal, Depends(get_current_principal)]


async def get_access_scope(db: DBDep, principal: PrincipalDep) -> AccessScope:
    """Resolved once per request and handed to every service call."""
    return await load_access_scope(db, principal)


ScopeDep = Annotated[AccessScope, Depends(get_access_scope)]


def get_summarizer() -> Summarizer:
    return OpenAISummarizer()


SummarizerDep = Annotated[Summarizer, Depends(get_summarizer)]
