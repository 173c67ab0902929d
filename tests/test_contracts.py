"""Contract creation, answers, documents and submission."""

from decimal import Decimal

import pytest

from loanflow import models
from loanflow.core.errors import Conflict, Forbidden, ValidationFailed
from loanflow.schemas.contracts import AnswerInput, ContractCreate
from loanflow.services import catalog, contracts
from loanflow.services.storage import IncomingFile, LocalStorage


def _create(db, actor, service, amount=2_000_000, **kwargs):
    return contracts.create_contract(
        db,
        actor_id=actor.id,
        payload=ContractCreate(service_id=service.id, requested_amount=amount, **kwargs),
    )


def _pdf(name="id.pdf", size=128):
    return IncomingFile(file_name=name, content=b"%" * size, mime_type="application/pdf")


def _requirement_id(service):
    return service.document_requirements[0].document_requirement_id


def _question_id(service):
    return service.questions[0].question_id


def test_create_contract_starts_in_first_stage(db_session, make_user, lending_service):
    owner = make_user("Borrower")

    contract = _create(db_session, owner, lending_service)

    assert contract.current_stage.code == "DRAFT"
    assert contract.user_id == owner.id
    assert contract.creator_id is None
    assert contract.requested_amount == Decimal("2000000.00")
    assert contract.contract_number.startswith("HD-")
    assert [d.document_requirement_id for d in contract.documents] == [
        _requirement_id(lending_service)
    ]
    assert all(d.status == models.DocumentStatus.PENDING for d in contract.documents)

    history = contracts.get_stage_history(db_session, contract.id)
    assert len(history) == 1
    assert history[0].from_stage_id is None
    assert history[0].to_stage_id == contract.current_stage_id


def test_amount_outside_service_range_creates_nothing(db_session, make_user, lending_service):
    owner = make_user("Borrower")

    with pytest.raises(ValidationFailed) as exc:
        _create(db_session, owner, lending_service, amount=500)

    assert exc.value.code == "AMOUNT_OUT_OF_RANGE"
    assert db_session.query(models.Contract).count() == 0
    assert db_session.query(models.ContractStageHistory).count() == 0


def test_inactive_service_is_rejected(db_session, make_user, lending_service):
    catalog.set_service_active(db_session, lending_service.id, False)

    with pytest.raises(ValidationFailed, match="Service is not active"):
        _create(db_session, make_user("Borrower"), lending_service)


def test_suspended_actor_cannot_create(db_session, make_user, lending_service):
    suspended = make_user("Ghost", status=models.UserStatus.SUSPENDED)

    with pytest.raises(Forbidden, match="Account is suspended"):
        _create(db_session, suspended, lending_service)


def test_on_behalf_creation_requires_agent(db_session, make_user, lending_service):
    agent = make_user("Agent", role_codes=(models.RoleCode.CTV,))
    plain = make_user("Plain")
    customer = make_user("Customer")

    with pytest.raises(Forbidden):
        _create(db_session, plain, lending_service, user_id=customer.id)

    contract = _create(db_session, agent, lending_service, user_id=customer.id)
    assert contract.user_id == customer.id
    assert contract.creator_id == agent.id

    created = contracts.list_created_for_others(db_session, agent.id)
    assert created.total == 1
    assert contracts.list_user_contracts(db_session, customer.id).total == 1
    assert contracts.list_user_contracts(db_session, agent.id).total == 0


def test_access_is_limited_to_owner_creator_and_admin(
    db_session, make_user, admin, lending_service
):
    owner = make_user("Borrower")
    stranger = make_user("Stranger")
    contract = _create(db_session, owner, lending_service)

    assert contracts.get_contract(db_session, contract.id, actor_id=owner.id).id == contract.id
    assert contracts.get_contract(db_session, contract.id, actor_id=admin.id).id == contract.id
    with pytest.raises(Forbidden):
        contracts.get_contract(db_session, contract.id, actor_id=stranger.id)


def test_update_answers_last_write_wins(db_session, make_user, lending_service):
    owner = make_user("Borrower")
    contract = _create(db_session, owner, lending_service)
    qid = _question_id(lending_service)

    contracts.update_answers(
        db_session,
        contract_id=contract.id,
        actor_id=owner.id,
        answers=[AnswerInput(question_id=qid, answer="10000000")],
    )
    rows = contracts.update_answers(
        db_session,
        contract_id=contract.id,
        actor_id=owner.id,
        answers=[AnswerInput(question_id=qid, answer="12000000")],
    )

    assert [(r.question_id, r.answer) for r in rows] == [(qid, "12000000")]

    with pytest.raises(ValidationFailed, match="Question does not belong to this service"):
        contracts.update_answers(
            db_session,
            contract_id=contract.id,
            actor_id=owner.id,
            answers=[AnswerInput(question_id="not-a-question", answer="x")],
        )


def test_submit_requires_mandatory_documents(db_session, make_user, make_service, tmp_path):
    service = make_service(required_document=True)
    owner = make_user("Borrower")
    contract = _create(db_session, owner, service)

    with pytest.raises(ValidationFailed) as exc:
        contracts.submit_contract(
            db_session,
            contract_id=contract.id,
            actor_id=owner.id,
            storage=LocalStorage(tmp_path),
        )

    assert exc.value.code == "MISSING_REQUIRED_DOCUMENT"
    db_session.expire_all()
    assert contracts.get_contract(db_session, contract.id).current_stage.code == "DRAFT"


def test_submit_uploads_files_and_moves_to_next_stage(
    db_session, make_user, make_service, tmp_path
):
    service = make_service(required_document=True, allowed_types=["application/pdf"], max_files=2)
    owner = make_user("Borrower")
    contract = _create(db_session, owner, service)
    storage = LocalStorage(tmp_path)
    rid = _requirement_id(service)

    submitted = contracts.submit_contract(
        db_session,
        contract_id=contract.id,
        actor_id=owner.id,
        answers=[AnswerInput(question_id=_question_id(service), answer="15000000")],
        files={rid: [_pdf()]},
        storage=storage,
    )

    assert submitted.current_stage.code == "SUBMITTED"
    document = submitted.documents[0]
    assert len(document.files) == 1
    stored = document.files[0]
    assert stored.mime_type == "application/pdf"
    assert stored.file_size == 128
    assert storage.get_file(storage.extract_key_from_url(stored.file_url)) == b"%" * 128
    assert [a.answer for a in submitted.answers] == ["15000000"]

    history = contracts.get_stage_history(db_session, contract.id)
    assert [h.meta["action"] for h in history] == ["contract_created", "contract_submitted"]

    with pytest.raises(Conflict, match="already been submitted"):
        contracts.submit_contract(
            db_session, contract_id=contract.id, actor_id=owner.id, storage=storage
        )


def test_submit_rejects_bad_files_before_uploading(db_session, make_user, make_service, tmp_path):
    service = make_service(allowed_types=["application/pdf"])
    owner = make_user("Borrower")
    contract = _create(db_session, owner, service)
    image = IncomingFile(file_name="id.png", content=b"png", mime_type="image/png")

    with pytest.raises(ValidationFailed, match="not allowed"):
        contracts.submit_contract(
            db_session,
            contract_id=contract.id,
            actor_id=owner.id,
            files={_requirement_id(service): [image]},
            storage=LocalStorage(tmp_path),
        )

    assert list(tmp_path.rglob("*.png")) == []
    assert db_session.query(models.ContractDocumentFile).count() == 0


def test_submit_rejects_files_for_unknown_requirement(
    db_session, make_user, lending_service, tmp_path
):
    owner = make_user("Borrower")
    contract = _create(db_session, owner, lending_service)

    with pytest.raises(ValidationFailed, match="does not belong to this service"):
        contracts.submit_contract(
            db_session,
            contract_id=contract.id,
            actor_id=owner.id,
            files={"other-requirement": [_pdf()]},
            storage=LocalStorage(tmp_path),
        )


def test_validate_document_files_collects_errors(lending_service):
    config = catalog.document_config_for(lending_service.document_requirements[0].document_requirement)
    strict = config.model_copy(update={"max_files": 1, "allowed_types": ["application/pdf"]})

    check = contracts.validate_document_files(
        strict,
        [_pdf("a.pdf"), IncomingFile(file_name="b.txt", content=b"x", mime_type="text/plain")],
    )

    assert check.valid is False
    assert "Maximum 1 file(s) allowed" in check.errors
    assert any("text/plain" in e for e in check.errors)


def test_add_files_then_review_once(db_session, make_user, admin, lending_service, tmp_path):
    owner = make_user("Borrower")
    contract = _create(db_session, owner, lending_service)
    document_id = contract.documents[0].id

    document = contracts.add_document_files(
        db_session,
        contract_id=contract.id,
        document_id=document_id,
        actor_id=owner.id,
        files=[_pdf()],
        storage=LocalStorage(tmp_path),
    )
    assert len(document.files) == 1

    reviewed = contracts.review_document(
        db_session,
        contract_id=contract.id,
        document_id=document_id,
        reviewer_id=admin.id,
        status="APPROVED",
        note="looks fine",
    )
    assert reviewed.status == models.DocumentStatus.APPROVED
    assert reviewed.reviewer_id == admin.id

    with pytest.raises(Conflict):
        contracts.review_document(
            db_session,
            contract_id=contract.id,
            document_id=document_id,
            reviewer_id=admin.id,
            status="REJECTED",
        )
    with pytest.raises(ValidationFailed, match="reviewed document"):
        contracts.add_document_files(
            db_session,
            contract_id=contract.id,
            document_id=document_id,
            actor_id=owner.id,
            files=[_pdf()],
            storage=LocalStorage(tmp_path),
        )


def test_search_contracts_matches_owner_and_number(db_session, make_user, lending_service):
    alice = make_user("Alice")
    bob = make_user("Bob")
    first = _create(db_session, alice, lending_service)
    _create(db_session, bob, lending_service)

    assert contracts.search_contracts(db_session).total == 2
    by_name = contracts.search_contracts(db_session, search="alice")
    assert [c.id for c in by_name.items] == [first.id]
    by_number = contracts.search_contracts(db_session, search=first.contract_number)
    assert by_number.total == 1
