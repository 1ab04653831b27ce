from datetime import date
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app.teamspace import create_app
from app.teamspace.db import session_scope
from app.teamspace.models import ROLE_AGENCY_MEMBER, ROLE_CORE_MEMBER, Agency, Base, LogBookEntry, User
from app.teamspace.modules.ledger.models import AgencyLedgerEntry, GroupLedgerEntry
from app.teamspace.modules.ledger.service import (
    ledger_summary,
    parse_amount,
    signed_amount,
    validate_ledger_payload,
)

CSRF = "test-csrf-token"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        north = Agency(name="North")
        south = Agency(name="South")
        s.add_all([north, south])
        s.flush()
        pw = generate_password_hash("pw1234")
        s.add_all(
            [
                User(name="Core", email="core@example.com", password_hash=pw, role=ROLE_CORE_MEMBER),
                User(name="Agent", email="agent@example.com", password_hash=pw, role=ROLE_AGENCY_MEMBER, agency_id=north.id),
                User(name="Loner", email="loner@example.com", password_hash=pw, role=ROLE_AGENCY_MEMBER),
            ]
        )
        s.flush()
        s.add(AgencyLedgerEntry(agency_id=south.id, description="South rent", amount=Decimal("50.00"), type="expense", date=date(2026, 1, 2)))
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email):
    client.post("/auth/login", data={"email": email, "password": "pw1234"})
    with client.session_transaction() as sess:
        sess["csrf_token"] = CSRF


def _entry(**overrides):
    data = {"description": "Consulting", "amount": "120.50", "type": "income", "date": "2026-03-01", "csrf_token": CSRF}
    data.update(overrides)
    return data


def _e(amount, kind):
    return GroupLedgerEntry(description="x", amount=Decimal(amount), type=kind, date=date(2026, 1, 1))


def test_summary_math():
    summary = ledger_summary([_e("100.00", "income"), _e("40.25", "expense"), _e("10.00", "income")])
    assert summary.income == Decimal("110.00")
    assert summary.expense == Decimal("40.25")
    assert summary.balance == Decimal("69.75")
    assert ledger_summary([]).balance == Decimal("0.00")


def test_signed_amount():
    assert signed_amount(_e("5", "income")) == Decimal("5")
    assert signed_amount(_e("5", "expense")) == Decimal("-5")


def test_parse_amount_rounds_to_cents():
    assert parse_amount("10.005") == Decimal("10.01")
    assert parse_amount("abc") is None
    assert parse_amount("NaN") is None


def test_validation():
    assert validate_ledger_payload(_entry()) == []
    errors = validate_ledger_payload(_entry(amount="0", type="gift", date="", description=" "))
    assert "Amount must be greater than zero." in errors
    assert "Type must be income or expense." in errors
    assert any("Date" in e for e in errors)
    assert "Description is required." in errors


def test_group_ledger_is_core_only(client):
    _login(client, "agent@example.com")
    assert client.get("/ledger/group").status_code == 403


def test_core_records_group_transaction(app, client):
    _login(client, "core@example.com")
    r = client.post("/ledger/group/new", data=_entry(), follow_redirects=True)
    assert r.status_code == 200
    assert b"Consulting" in r.data
    assert b"$120.50" in r.data
    with session_scope(app) as s:
        assert s.query(GroupLedgerEntry).count() == 1
        assert s.query(LogBookEntry).filter(LogBookEntry.event_type == "ledger_entry_created").count() == 1


def test_invalid_transaction_is_rejected(app, client):
    _login(client, "core@example.com")
    r = client.post("/ledger/group/new", data=_entry(amount="-3"))
    assert r.status_code == 400
    assert b"greater than zero" in r.data
    with session_scope(app) as s:
        assert s.query(GroupLedgerEntry).count() == 0


def test_agency_member_sees_only_own_agency(app, client):
    _login(client, "agent@example.com")
    r = client.post("/ledger/agency/new", data=_entry(description="North sale"), follow_redirects=True)
    assert r.status_code == 200
    assert b"North sale" in r.data
    assert b"South rent" not in r.data
    with session_scope(app) as s:
        e = s.query(AgencyLedgerEntry).filter(AgencyLedgerEntry.description == "North sale").one()
        assert e.agency.name == "North"


def test_agency_member_cannot_touch_other_agency_entry(app, client):
    with session_scope(app) as s:
        south_entry_id = s.query(AgencyLedgerEntry).filter(AgencyLedgerEntry.description == "South rent").one().id
    _login(client, "agent@example.com")
    r = client.post(f"/ledger/agency/{south_entry_id}/delete", data={"csrf_token": CSRF})
    assert r.status_code == 403
    with session_scope(app) as s:
        assert s.get(AgencyLedgerEntry, south_entry_id) is not None


def test_member_without_agency_sees_panel(client):
    _login(client, "loner@example.com")
    r = client.get("/ledger/agency")
    assert r.status_code == 200
    assert b"No Agency Assigned" in r.data


def test_type_filter(client):
    _login(client, "core@example.com")
    client.post("/ledger/group/new", data=_entry(description="Fees in"))
    client.post("/ledger/group/new", data=_entry(description="Paper out", type="expense"))
    r = client.get("/ledger/group?type=expense")
    assert b"Paper out" in r.data
    assert b"Fees in" not in r.data


def test_other_agency_edit_is_403_before_validation(app, client):
    with session_scope(app) as s:
        south_entry_id = s.query(AgencyLedgerEntry).filter(AgencyLedgerEntry.description == "South rent").one().id
    _login(client, "agent@example.com")
    r = client.post(f"/ledger/agency/{south_entry_id}/edit", data=_entry(description="", amount="-1"))
    assert r.status_code == 403
    with session_scope(app) as s:
        assert s.get(AgencyLedgerEntry, south_entry_id).description == "South rent"
