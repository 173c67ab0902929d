"""Deferred side effects that run only after a transaction commits.

A service queues work with ``defer_after_commit`` while it builds its
transaction, commits, then calls ``run_after_commit``. Queued work is
dropped if the session rolls back. Every action runs in its own
transaction on the same session, and a failing action is logged and
rolled back without affecting the committed work or the other actions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger("loanflow.post_commit")

_QUEUE_KEY = "loanflow.post_commit"


@dataclass
class DeferredAction:
    name: str
    fn: Callable[..., Any]
    kwargs: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeferredOutcome:
    name: str
    ok: bool
    result: Any = None
    error: str | None = None


def defer_after_commit(db: Session, name: str, fn: Callable[..., Any], **kwargs: Any) -> None:
    """Queue ``fn(db, **kwargs)`` to run once the current transaction commits."""

    db.info.setdefault(_QUEUE_KEY, []).append(DeferredAction(name=name, fn=fn, kwargs=kwargs))


def pending_actions(db: Session) -> list[DeferredAction]:
    return list(db.info.get(_QUEUE_KEY, []))


def discard_deferred(db: Session) -> None:
    db.info.pop(_QUEUE_KEY, None)


@event.listens_for(Session, "after_rollback")
def _drop_queue_on_rollback(session: Session) -> None:
    discard_deferred(session)


def run_after_commit(db: Session) -> list[DeferredOutcome]:
    actions = db.info.pop(_QUEUE_KEY, [])
    outcomes: list[DeferredOutcome] = []
    for action in actions:
        try:
            result = action.fn(db, **action.kwargs)
        except Exception as exc:
            db.rollback()
            logger.exception(
                "post_commit_action_failed",
                extra={"action": action.name, "error": str(exc), **_loggable(action.kwargs)},
            )
            outcomes.append(DeferredOutcome(name=action.name, ok=False, error=str(exc)))
            continue
        outcomes.append(DeferredOutcome(name=action.name, ok=True, result=result))
    return outcomes


def _loggable(kwargs: dict[str, Any]) -> dict[str, str]:
    return {f"arg_{k}": str(v) for k, v in kwargs.items()}
