from __future__ import annotations

import argparse
import dataclasses
import json

from loanflow.core.periods import previous_month, utc_now
from loanflow.database import SessionLocal
from loanflow.services.audit import SYSTEM_ACTOR_ID
from loanflow.services.scheduler import run_manual_snapshot


def _parse_month(value: str) -> int:
    try:
        month = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("Invalid month, expected 1-12") from exc
    if not 1 <= month <= 12:
        raise argparse.ArgumentTypeError("Invalid month, expected 1-12")
    return month


def main() -> int:
    default_year, default_month = previous_month(utc_now().date())

    parser = argparse.ArgumentParser(
        description="Monthly commission snapshot batch (defaults to the previous month)."
    )
    parser.add_argument("--year", type=int, default=default_year)
    parser.add_argument("--month", type=_parse_month, default=default_month)
    args = parser.parse_args()

    db = SessionLocal()
    try:
        result = run_manual_snapshot(
            db, year=args.year, month=args.month, actor_id=SYSTEM_ACTOR_ID
        )
        print(
            json.dumps(
                dataclasses.asdict(result),
                ensure_ascii=False,
                indent=2,
                default=str,
            )
        )
        return 0 if result.failed == 0 else 1
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
