from loanflow import models
from loanflow.services.post_commit import (
    defer_after_commit,
    pending_actions,
    run_after_commit,
)


def test_actions_run_in_order_after_commit(db_session):
    seen = []

    defer_after_commit(db_session, "first", lambda db, value: seen.append(value) or value, value=1)
    defer_after_commit(db_session, "second", lambda db, value: seen.append(value) or value, value=2)
    assert seen == []

    db_session.commit()
    outcomes = run_after_commit(db_session)

    assert seen == [1, 2]
    assert [(o.name, o.ok, o.result) for o in outcomes] == [("first", True, 1), ("second", True, 2)]
    assert pending_actions(db_session) == []


def test_rollback_discards_queue(db_session):
    defer_after_commit(db_session, "never", lambda db: None)

    db_session.rollback()

    assert pending_actions(db_session) == []
    assert run_after_commit(db_session) == []


def test_failing_action_is_isolated(db_session, make_user):
    user = make_user("Someone")

    def rename_then_fail(db):
        db.get(models.User, user.id).full_name = "half-written"
        db.flush()
        raise RuntimeError("downstream failed")

    def rename(db):
        db.get(models.User, user.id).full_name = "Renamed"
        db.commit()
        return "done"

    defer_after_commit(db_session, "broken", rename_then_fail)
    defer_after_commit(db_session, "healthy", rename)
    outcomes = run_after_commit(db_session)

    assert [(o.name, o.ok) for o in outcomes] == [("broken", False), ("healthy", True)]
    assert outcomes[0].error == "downstream failed"
    db_session.expire_all()
    assert db_session.get(models.User, user.id).full_name == "Renamed"
