from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from loanflow import models
from loanflow.core.periods import utc_now


@dataclass(frozen=True)
class TransitionResult:
    updated: bool
    rowcount: int


def atomic_transition_contract_stage(
    *,
    db: Session,
    contract_id: str,
    from_stage_id: str,
    to_stage_id: str,
    updates: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> TransitionResult:
    """Move a contract between stages with an atomic DB guard.

    A single conditional UPDATE keeps a stale reader from overwriting a
    move that already happened:

        UPDATE contracts
        SET current_stage_id = :to_stage_id, ...
        WHERE id = :contract_id AND current_stage_id = :from_stage_id

    Callers control commit/rollback and decide what a zero rowcount means.
    """

    if now is None:
        now = utc_now()

    values: dict[str, Any] = {"current_stage_id": str(to_stage_id), "updated_at": now}
    if updates:
        values.update(updates)

    rowcount = (
        db.query(models.Contract)
        .filter(models.Contract.id == str(contract_id))
        .filter(models.Contract.current_stage_id == str(from_stage_id))
        .update(values, synchronize_session=False)
    )
    return TransitionResult(updated=rowcount > 0, rowcount=int(rowcount or 0))
