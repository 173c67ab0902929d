import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger("loanflow.audit")

# Reserved actor for batch jobs and other non-human writes.
SYSTEM_ACTOR_ID = "SYSTEM"


def _json_default(value: Any) -> str:
    return str(value)


def audit_event(
    action: str,
    user_id: Optional[str],
    payload: Dict[str, Any] | None = None,
    *,
    db: Session | None = None,
    target_type: str | None = None,
    target_id: str | None = None,
    idempotency_key: str | None = None,
    request_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
) -> Optional[str]:
    """Persist an audit entry; failures are logged and never propagate.

    Call this after the business transaction has committed: the entry is
    committed on ``db`` (or a private session when ``db`` is None) so a
    failing audit write cannot undo the operation it describes.

    Returns the audit log id when available.
    """

    created_session = False
    session: Session | None = db
    try:
        from loanflow import models

        if session is None:
            from loanflow.database import SessionLocal

            session = SessionLocal()
            created_session = True

        if idempotency_key:
            existing = (
                session.query(models.AuditLog)
                .filter(models.AuditLog.idempotency_key == idempotency_key)
                .first()
            )
            if existing is not None:
                return existing.id

        log = models.AuditLog(
            action=action,
            user_id=str(user_id) if user_id is not None else None,
            target_type=target_type,
            target_id=str(target_id) if target_id is not None else None,
            payload_json=json.dumps(payload or {}, default=_json_default),
            idempotency_key=idempotency_key,
            request_id=request_id,
            ip=ip,
            user_agent=user_agent,
        )
        session.add(log)
        session.commit()
        return log.id
    except SQLAlchemyError as exc:
        if session is not None:
            session.rollback()
        logger.warning(
            "audit_write_failed",
            extra={
                "action": action,
                "user_id": user_id,
                "target_type": target_type,
                "target_id": target_id,
                "error": str(exc),
            },
        )
        return None
    finally:
        if created_session and session is not None:
            session.close()
