from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from loanflow import models
from loanflow.config import settings
from loanflow.core.periods import utc_now
from loanflow.database import supports_row_locks

SEQUENCE_WIDTH = 6


@dataclass(frozen=True)
class ContractNumber:
    year: int
    seq: int
    formatted: str


def format_contract_number(*, prefix: str, year: int, seq: int) -> str:
    """Format: PREFIX-YYYY-NNNNNN (sequence resets every calendar year)."""

    return f"{prefix}-{int(year):04d}-{int(seq):0{SEQUENCE_WIDTH}d}"


def parse_sequence(contract_number: str | None, *, prefix: str, year: int) -> int | None:
    if not contract_number:
        return None
    m = re.fullmatch(rf"{re.escape(prefix)}-{int(year):04d}-(\d+)", contract_number.strip())
    if not m:
        return None
    return int(m.group(1))


def next_contract_number(
    db: Session,
    *,
    now: datetime | None = None,
    prefix: str | None = None,
) -> ContractNumber:
    """Allocate the next number for ``now``'s year.

    Reads the highest number issued this year and increments it; an
    unparsable or missing predecessor starts the year at 1. Concurrent
    allocators may collide, in which case the unique constraint on
    ``contracts.contract_number`` rejects the loser and the caller retries.
    """

    now = now or utc_now()
    prefix = prefix or settings.contract_number_prefix
    year = now.year
    year_prefix = f"{prefix}-{year:04d}-"

    q = (
        db.query(models.Contract.contract_number)
        .filter(models.Contract.contract_number.like(f"{year_prefix}%"))
        .order_by(models.Contract.contract_number.desc())
    )
    if supports_row_locks(db):
        q = q.with_for_update()

    latest = q.first()
    last_seq = parse_sequence(latest[0] if latest else None, prefix=prefix, year=year)
    seq = (last_seq or 0) + 1

    return ContractNumber(
        year=year,
        seq=seq,
        formatted=format_contract_number(prefix=prefix, year=year, seq=seq),
    )
