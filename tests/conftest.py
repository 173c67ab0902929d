import os
import tempfile

# Environment must be set before loanflow.config.settings is loaded.
_TEST_DIR = tempfile.mkdtemp(prefix="loanflow-tests-")
os.environ["SECRET_KEY"] = "test-secret-key-1234567890"
os.environ["DATABASE_URL"] = f"sqlite+pysqlite:///{os.path.join(_TEST_DIR, 'test_loanflow.db')}"
os.environ["ENVIRONMENT"] = "test"
os.environ["API_V1_STR"] = "/api"
os.environ["STORAGE_DIR"] = os.path.join(_TEST_DIR, "storage")
os.environ["SCHEDULER_ENABLED"] = "false"

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from loanflow import models  # noqa: E402
from loanflow.database import Base, get_db  # noqa: E402
from loanflow.database import engine as app_engine  # noqa: E402
from loanflow.main import app  # noqa: E402
from loanflow.schemas.catalog import (  # noqa: E402
    DocumentConfig,
    DocumentRequirementCreate,
    QuestionCreate,
    ServiceCreate,
    ServiceDocumentLink,
    ServiceQuestionLink,
)
from loanflow.schemas.contracts import ContractCreate  # noqa: E402
from loanflow.schemas.workflows import TransitionDefinition, WorkflowCreate  # noqa: E402
from loanflow.services import catalog, contracts, workflow_engine  # noqa: E402

TEST_ENGINE = app_engine

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=TEST_ENGINE, future=True)

COMPLETE_PERMISSION = "contract.complete"

LENDING_TRANSITIONS = [
    ("DRAFT", "SUBMITTED", None),
    ("SUBMITTED", "REVIEWING", None),
    ("REVIEWING", "APPROVED", None),
    ("REVIEWING", "REJECTED", None),
    ("APPROVED", "DISBURSED", None),
    ("DISBURSED", "COMPLETED", COMPLETE_PERMISSION),
]


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope="function", autouse=True)
def setup_test_database():
    """Fresh schema per test; dependency overrides restored afterwards."""

    original_overrides = dict(app.dependency_overrides)

    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)

    yield

    app.dependency_overrides.clear()
    app.dependency_overrides.update(original_overrides)
    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def roles(db_session):
    """ADMIN, CTV and USER roles; ADMIN holds the completion permission."""

    out = {}
    for code in (models.RoleCode.ADMIN, models.RoleCode.CTV, models.RoleCode.USER):
        role = models.Role(code=code, name=code.title(), is_system=True)
        db_session.add(role)
        out[code] = role
    permission = models.Permission(code=COMPLETE_PERMISSION, name="Complete contracts")
    db_session.add(permission)
    db_session.flush()
    db_session.add(
        models.RolePermission(role_id=out[models.RoleCode.ADMIN].id, permission_id=permission.id)
    )
    db_session.commit()
    return out


@pytest.fixture
def make_user(db_session, roles):
    counter = {"n": 0}

    def _make(
        name: str = "User",
        *,
        role_codes=(models.RoleCode.USER,),
        referred_by: str | None = None,
        status: models.UserStatus = models.UserStatus.ACTIVE,
    ) -> models.User:
        counter["n"] += 1
        user = models.User(
            full_name=f"{name} {counter['n']}",
            email=f"{name.lower().replace(' ', '.')}{counter['n']}@example.com",
            phone=f"09000000{counter['n']:02d}",
            status=status,
            referred_by=referred_by,
        )
        db_session.add(user)
        db_session.flush()
        for code in role_codes:
            db_session.add(models.UserRole(user_id=user.id, role_id=roles[code].id))
        db_session.commit()
        return user

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("Admin", role_codes=(models.RoleCode.ADMIN,))


@pytest.fixture
def lending_workflow(db_session, admin):
    payload = WorkflowCreate(
        name="Personal loan",
        stages=workflow_engine.default_stage_definitions(),
        transitions=[
            TransitionDefinition(from_stage_code=a, to_stage_code=b, required_permission=perm)
            for a, b, perm in LENDING_TRANSITIONS
        ],
    )
    return workflow_engine.create_workflow(db_session, payload, actor_id=admin.id)


@pytest.fixture
def make_service(db_session, lending_workflow):
    def _make(*, required_document: bool = False, commission_enabled: bool = True, **config):
        requirement = catalog.create_document_requirement(
            db_session,
            DocumentRequirementCreate(
                name="National ID",
                config=DocumentConfig(**config) if config else None,
            ),
        )
        question = catalog.create_question(
            db_session, QuestionCreate(content="Monthly income?", question_type="NUMBER")
        )
        return catalog.create_service(
            db_session,
            ServiceCreate(
                name="Cash loan",
                workflow_id=lending_workflow.id,
                commission_enabled=commission_enabled,
                document_requirements=[
                    ServiceDocumentLink(
                        document_requirement_id=requirement.id, is_required=required_document
                    )
                ],
                questions=[ServiceQuestionLink(question_id=question.id)],
            ),
        )

    return _make


@pytest.fixture
def lending_service(make_service):
    return make_service()


@pytest.fixture
def stage(db_session, lending_workflow):
    def _by_code(code: str) -> models.WorkflowStage:
        return workflow_engine.get_stage_by_code(db_session, lending_workflow.id, code)

    return _by_code


@pytest.fixture
def set_commission_rate(db_session, roles):
    def _set(role_code: str, rate: str) -> models.CommissionConfig:
        config = models.CommissionConfig(role_code=role_code, rate=Decimal(rate), is_active=True)
        db_session.add(config)
        db_session.commit()
        return config

    return _set


@pytest.fixture
def complete_contract(db_session, admin, lending_service, stage):
    """Create a contract and walk it to COMPLETED; disbursement stamped at ``when``."""

    def _complete(owner, when, *, created_by=None, amount="2000000", percentage="5"):
        actor = created_by or owner
        contract = contracts.create_contract(
            db_session,
            actor_id=actor.id,
            payload=ContractCreate(
                service_id=lending_service.id,
                requested_amount=2_000_000,
                user_id=owner.id if created_by is not None else None,
            ),
        )
        contracts.submit_contract(db_session, contract_id=contract.id, actor_id=actor.id)
        for code in ("REVIEWING", "APPROVED", "DISBURSED"):
            contracts.transition_stage(
                db_session, contract_id=contract.id, to_stage_id=stage(code).id, actor_id=admin.id
            )
        return contracts.transition_stage(
            db_session,
            contract_id=contract.id,
            to_stage_id=stage("COMPLETED").id,
            actor_id=admin.id,
            disbursement_amount=amount,
            revenue_percentage=percentage,
            now=when,
        )

    return _complete
