"""Database-backed capability checks.

Role and permission management lives elsewhere; this module only answers
"does this user hold X" questions for the lifecycle services.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from loanflow import models
from loanflow.core.errors import Forbidden, NotFound


def get_user_roles(db: Session, user_id: str) -> list[str]:
    rows = (
        db.query(models.Role.code)
        .join(models.UserRole, models.UserRole.role_id == models.Role.id)
        .filter(models.UserRole.user_id == str(user_id))
        .order_by(models.Role.code.asc())
        .all()
    )
    return [code for (code,) in rows]


def get_user_permissions(db: Session, user_id: str) -> list[str]:
    rows = (
        db.query(models.Permission.code)
        .join(models.RolePermission, models.RolePermission.permission_id == models.Permission.id)
        .join(models.UserRole, models.UserRole.role_id == models.RolePermission.role_id)
        .filter(models.UserRole.user_id == str(user_id))
        .distinct()
        .order_by(models.Permission.code.asc())
        .all()
    )
    return [code for (code,) in rows]


def has_permission(db: Session, user_id: str, code: str) -> bool:
    return str(code) in set(get_user_permissions(db, user_id))


def has_any_role(db: Session, user_id: str, *codes: str) -> bool:
    wanted = {str(c).upper() for c in codes}
    return bool(wanted.intersection(get_user_roles(db, user_id)))


def ensure_active_user(db: Session, user_id: str) -> models.User:
    user = db.get(models.User, str(user_id))
    if user is None:
        raise NotFound("User not found", user_id=str(user_id))
    if user.is_suspended:
        raise Forbidden("Account is suspended", code="ACCOUNT_SUSPENDED", user_id=user.id)
    return user
