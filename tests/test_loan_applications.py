import asyncio
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.sql import Delete, Select, Update

from app.api import deps
from app.core.errors import Forbidden, InvalidTransition, NotFound, ValidationFailed
from app.core.security import VerifiedIdentity
from app.db.session import get_db
from app.main import app
from app.models.audit_log import AuditLog
from app.models.loan_application import LoanApplication
from app.schemas.loan import LoanApplicationCreate, LoanApplicationStatus
from app.services import loan_applications
from conftest import (
    BORROWER_EMAIL,
    MANAGER_EMAIL,
    OTHER_BORROWER_EMAIL,
    FakeAsyncSession,
    FakeResult,
    account_lookup,
    bearer,
    bound_params,
    make_account,
    make_application,
    make_product,
    sequence_handler,
    statement_entity,
)

ALICE = VerifiedIdentity(email=BORROWER_EMAIL)
BOB = VerifiedIdentity(email=OTHER_BORROWER_EMAIL)


class ApplicationStore:
    """In-memory ``loan_applications`` table honouring the conditional DML."""

    def __init__(self, *applications: LoanApplication) -> None:
        self.rows = {application.id: application for application in applications}

    def handle(self, stmt):
        if isinstance(stmt, Update):
            params = bound_params(stmt)
            row = self.rows.get(params["id_1"])
            if row is None or row.status != params["status_1"]:
                return FakeResult(scalar=None)
            for field in ("status", "decided_at", "decided_by", "decision_note"):
                setattr(row, field, params[field])
            return FakeResult(scalar=row)
        if isinstance(stmt, Delete):
            params = bound_params(stmt)
            row = self.rows.get(params["id_1"])
            if row is None or row.owner_email != params["owner_email_1"] or row.status != params["status_1"]:
                return FakeResult(rowcount=0)
            del self.rows[row.id]
            return FakeResult(rowcount=1)
        if isinstance(stmt, Select) and statement_entity(stmt) is LoanApplication:
            params = bound_params(stmt)
            if "id_1" in params:
                return FakeResult(scalar=self.rows.get(params["id_1"]))
        return None


class DecidedBeforeDeleteStore(ApplicationStore):
    """A manager decides every row just before the delete lands."""

    def handle(self, stmt):
        if isinstance(stmt, Delete):
            for row in self.rows.values():
                row.status = "approved"
                row.decided_at = datetime.now(timezone.utc)
        return super().handle(stmt)


class StoreSession(FakeAsyncSession):
    """Session over a shared store that yields to the loop on every statement."""

    def __init__(self, store: ApplicationStore, *accounts) -> None:
        super().__init__()
        self.on_execute(account_lookup(*accounts))
        self.on_execute(store.handle)

    async def execute(self, stmt, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().execute(stmt, *args, **kwargs)


@pytest.fixture
def store_client(verifier, manager_account, borrower_account):
    """Client whose sessions all read and write one ApplicationStore."""
    store = ApplicationStore()
    other = make_account(email=OTHER_BORROWER_EMAIL)

    async def _get_db():
        yield StoreSession(store, manager_account, borrower_account, other)

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[deps.get_identity_verifier] = lambda: verifier
    yield TestClient(app), store
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# submit
# ---------------------------------------------------------------------------


def test_submit_ignores_client_controlled_fields(client, fake_db) -> None:
    before = datetime.now(timezone.utc)

    resp = client.post(
        "/api/v1/loan-applications",
        headers=bearer("alice-token"),
        json={
            "amount": 5000,
            "purpose": "Tuition",
            "status": "approved",
            "appliedAt": "2000-01-01T00:00:00Z",
            "ownerEmail": "mallory@example.com",
            "guarantor": "Dana",
        },
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "pending"
    assert body["ownerEmail"] == BORROWER_EMAIL
    assert body["decidedAt"] is None
    assert datetime.fromisoformat(body["appliedAt"].replace("Z", "+00:00")) >= before
    assert body["payload"] == {"guarantor": "Dana", "amount": "5000", "purpose": "Tuition"}
    stored = fake_db.added_of(LoanApplication)[0]
    assert stored.status == "pending"
    assert fake_db.added_of(AuditLog)[0].action == "loan_application.submitted"


def test_submit_requires_authentication(client) -> None:
    resp = client.post("/api/v1/loan-applications", json={"amount": 100})

    assert resp.status_code == 401


def test_submit_rejects_non_positive_amount(client) -> None:
    resp = client.post("/api/v1/loan-applications", headers=bearer("alice-token"), json={"amount": 0})

    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_submit_checks_product_exists() -> None:
    db = FakeAsyncSession().on_execute_return(FakeResult(scalar=None))

    with pytest.raises(NotFound):
        await loan_applications.submit(db, ALICE, LoanApplicationCreate(loan_product_id=uuid4()))
    assert db.added == []


@pytest.mark.asyncio
async def test_submit_links_existing_product() -> None:
    product = make_product()
    db = FakeAsyncSession().on_execute_return(FakeResult(scalar=product))

    application = await loan_applications.submit(
        db, ALICE, LoanApplicationCreate(loan_product_id=product.id, amount="1200.50")
    )

    assert application.loan_product_id == product.id
    assert application.payload == {"amount": "1200.50"}
    assert application.owner_email == BORROWER_EMAIL


# ---------------------------------------------------------------------------
# decide
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_decide_pending_sets_terminal_state() -> None:
    application = make_application()
    db = StoreSession(ApplicationStore(application))

    decided = await loan_applications.decide(
        db, application.id, "approved", actor_email=MANAGER_EMAIL, note="Looks good"
    )

    assert decided.status == "approved"
    assert decided.decided_at is not None
    assert decided.decided_by == MANAGER_EMAIL
    assert decided.decision_note == "Looks good"
    assert db.added_of(AuditLog)[0].action == "loan_application.approved"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["approved", "rejected"])
async def test_decide_terminal_application_is_refused(status) -> None:
    application = make_application(status=status)
    original_decided_at = application.decided_at
    db = StoreSession(ApplicationStore(application))

    with pytest.raises(InvalidTransition):
        await loan_applications.decide(db, application.id, "rejected", actor_email=MANAGER_EMAIL)

    assert application.status == status
    assert application.decided_at == original_decided_at
    assert db.rollbacks == 1
    assert db.added_of(AuditLog) == []


@pytest.mark.asyncio
async def test_decide_unknown_application_is_not_found() -> None:
    db = StoreSession(ApplicationStore())

    with pytest.raises(NotFound):
        await loan_applications.decide(db, uuid4(), "approved", actor_email=MANAGER_EMAIL)
    with pytest.raises(NotFound):
        await loan_applications.decide(db, "garbage", "approved", actor_email=MANAGER_EMAIL)


@pytest.mark.asyncio
async def test_decide_back_to_pending_is_invalid() -> None:
    db = StoreSession(ApplicationStore(make_application()))

    with pytest.raises(ValidationFailed):
        await loan_applications.decide(db, uuid4(), LoanApplicationStatus.PENDING, actor_email=MANAGER_EMAIL)


@pytest.mark.asyncio
async def test_concurrent_decisions_have_one_winner() -> None:
    application = make_application()
    store = ApplicationStore(application)

    results = await asyncio.gather(
        loan_applications.decide(StoreSession(store), application.id, "approved", actor_email=MANAGER_EMAIL),
        loan_applications.decide(StoreSession(store), application.id, "rejected", actor_email="admin@example.com"),
        return_exceptions=True,
    )

    winners = [result for result in results if isinstance(result, LoanApplication)]
    losers = [result for result in results if isinstance(result, InvalidTransition)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert application.status == winners[0].status
    assert application.status in {"approved", "rejected"}


def test_decide_route_for_manager(store_client) -> None:
    client, store = store_client
    application = make_application()
    store.rows[application.id] = application

    resp = client.patch(
        f"/api/v1/loan-applications/{application.id}/decide",
        headers=bearer("manager-token"),
        json={"status": "rejected", "note": "Insufficient income"},
    )
    again = client.patch(
        f"/api/v1/loan-applications/{application.id}/decide",
        headers=bearer("manager-token"),
        json={"status": "approved"},
    )

    assert resp.status_code == 200
    assert resp.json()["status"] == "rejected"
    assert resp.json()["decisionNote"] == "Insufficient income"
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_transition"
    assert application.status == "rejected"


def test_decide_route_refuses_borrower(store_client) -> None:
    client, store = store_client
    application = make_application()
    store.rows[application.id] = application

    resp = client.patch(
        f"/api/v1/loan-applications/{application.id}/decide",
        headers=bearer("alice-token"),
        json={"status": "approved"},
    )

    assert resp.status_code == 403
    assert application.status == "pending"


def test_decide_route_rejects_pending_target(store_client) -> None:
    client, store = store_client
    application = make_application()
    store.rows[application.id] = application

    resp = client.patch(
        f"/api/v1/loan-applications/{application.id}/decide",
        headers=bearer("manager-token"),
        json={"status": "pending"},
    )

    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"


# ---------------------------------------------------------------------------
# withdraw
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_owner_withdraws_pending_application() -> None:
    application = make_application()
    store = ApplicationStore(application)

    withdrawn = await loan_applications.withdraw(StoreSession(store), ALICE, application.id)

    assert withdrawn == application.id
    assert application.id not in store.rows


@pytest.mark.asyncio
async def test_non_owner_cannot_withdraw() -> None:
    application = make_application()
    store = ApplicationStore(application)

    with pytest.raises(Forbidden):
        await loan_applications.withdraw(StoreSession(store), BOB, application.id)
    assert application.id in store.rows


@pytest.mark.asyncio
async def test_decided_application_cannot_be_withdrawn() -> None:
    application = make_application(status="approved")
    store = ApplicationStore(application)

    with pytest.raises(InvalidTransition):
        await loan_applications.withdraw(StoreSession(store), ALICE, application.id)
    assert application.id in store.rows


@pytest.mark.asyncio
async def test_withdraw_loses_race_with_decision() -> None:
    application = make_application()
    db = StoreSession(DecidedBeforeDeleteStore(application))

    with pytest.raises(InvalidTransition):
        await loan_applications.withdraw(db, ALICE, application.id)
    assert db.rollbacks == 1


def test_withdraw_route(store_client) -> None:
    client, store = store_client
    application = make_application()
    store.rows[application.id] = application

    denied = client.delete(f"/api/v1/loan-applications/{application.id}", headers=bearer("bob-token"))
    resp = client.delete(f"/api/v1/loan-applications/{application.id}", headers=bearer("alice-token"))
    gone = client.delete(f"/api/v1/loan-applications/{application.id}", headers=bearer("alice-token"))

    assert denied.status_code == 403
    assert resp.status_code == 200
    assert resp.json() == {"id": str(application.id), "withdrawn": True}
    assert gone.status_code == 404


# ---------------------------------------------------------------------------
# listing and reads
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_mine_is_scoped_to_caller() -> None:
    mine = [make_application(), make_application()]
    db = FakeAsyncSession().on_execute(sequence_handler([FakeResult(scalar=2), FakeResult(items=mine)]))

    items, total = await loan_applications.list_mine(db, ALICE, status=LoanApplicationStatus.PENDING)

    assert items == mine
    assert total == 2
    for stmt in db.executed:
        params = bound_params(stmt)
        assert params["owner_email_1"] == BORROWER_EMAIL
        assert params["status_1"] == "pending"
    page_sql = str(db.executed[-1])
    assert "ORDER BY loan_applications.applied_at DESC" in page_sql


@pytest.mark.asyncio
async def test_list_pending_is_global() -> None:
    db = FakeAsyncSession().on_execute(sequence_handler([FakeResult(scalar=0), FakeResult(items=[])]))

    await loan_applications.list_pending(db, VerifiedIdentity(email=MANAGER_EMAIL))

    params = bound_params(db.executed[-1])
    assert "owner_email_1" not in params
    assert params["status_1"] == "pending"


def test_list_mine_route(client, fake_db) -> None:
    mine = make_application()
    fake_db.on_execute(sequence_handler([FakeResult(scalar=1), FakeResult(items=[mine])]))

    resp = client.get("/api/v1/loan-applications/mine", headers=bearer("alice-token"))

    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 1
    assert body["items"][0]["id"] == str(mine.id)
    assert bound_params(fake_db.executed[-1])["owner_email_1"] == BORROWER_EMAIL


def test_list_pending_route_for_manager(client, fake_db, manager_account) -> None:
    pending = [make_application(owner_email=BORROWER_EMAIL), make_application(owner_email=OTHER_BORROWER_EMAIL)]
    fake_db.on_execute(account_lookup(manager_account))
    fake_db.on_execute(sequence_handler([FakeResult(scalar=2), FakeResult(items=pending)]))

    resp = client.get("/api/v1/loan-applications/pending", headers=bearer("manager-token"))

    assert resp.status_code == 200
    assert {item["ownerEmail"] for item in resp.json()["items"]} == {BORROWER_EMAIL, OTHER_BORROWER_EMAIL}


def test_read_application_owner_or_decider(store_client) -> None:
    client, store = store_client
    application = make_application()
    store.rows[application.id] = application
    url = f"/api/v1/loan-applications/{application.id}"

    assert client.get(url, headers=bearer("alice-token")).status_code == 200
    assert client.get(url, headers=bearer("manager-token")).status_code == 200
    assert client.get(url, headers=bearer("bob-token")).status_code == 403
    assert client.get(f"/api/v1/loan-applications/{uuid4()}", headers=bearer("alice-token")).status_code == 404
