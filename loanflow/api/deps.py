from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from loanflow import models
from loanflow.config import settings
from loanflow.core.security import decode_access_token_subject
from loanflow.database import get_db
from loanflow.services import rbac


def _token_url() -> str:
    if settings.api_prefix:
        prefix = settings.api_prefix.rstrip("/")
        return f"{prefix}/auth/token"
    return "/auth/token"


oauth2_optional = OAuth2PasswordBearer(tokenUrl=_token_url(), auto_error=False)

_DB_DEP = Depends(get_db)
_TOKEN_OPT_DEP = Depends(oauth2_optional)


def _extract_bearer_from_headers(request: Request) -> Optional[str]:
    # Some proxies strip the standard Authorization header.
    raw = request.headers.get("authorization") or request.headers.get("x-auth-token")
    if not raw:
        return None
    s = str(raw).strip()
    if not s:
        return None
    if s.lower().startswith("bearer "):
        return s.split(" ", 1)[1].strip()
    return s


def get_current_user(
    request: Request,
    db: Session = _DB_DEP,
    token: Optional[str] = _TOKEN_OPT_DEP,
) -> models.User:
    if not token:
        token = _extract_bearer_from_headers(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    subject = decode_access_token_subject(token)
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    user = db.get(models.User, subject)
    if user is None or user.is_suspended:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user


def require_roles(*roles: str) -> Callable:
    """Allow users holding any of ``roles``; ADMIN has access to everything."""

    _CURRENT_USER_DEP = Depends(get_current_user)
    allowed = {str(r).upper() for r in roles}

    def dependency(
        user: models.User = _CURRENT_USER_DEP, db: Session = _DB_DEP
    ) -> models.User:
        if not allowed:
            return user
        held = set(rbac.get_user_roles(db, user.id))
        if models.RoleCode.ADMIN in held or held & allowed:
            return user
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")

    return dependency


def require_permission(code: str) -> Callable:
    _CURRENT_USER_DEP = Depends(get_current_user)

    def dependency(
        user: models.User = _CURRENT_USER_DEP, db: Session = _DB_DEP
    ) -> models.User:
        if rbac.has_any_role(db, user.id, models.RoleCode.ADMIN):
            return user
        if not rbac.has_permission(db, user.id, code):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {code}"
            )
        return user

    return dependency


def request_id_of(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id")
