from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import TYPE_CHECKING, Iterable, Union

from app.teamspace.logbook import record_event
from app.teamspace.modules.ledger.models import ENTRY_EXPENSE, ENTRY_INCOME, AgencyLedgerEntry, GroupLedgerEntry
from app.teamspace.policies import can_manage_agency_ledger, can_manage_group_ledger, ensure

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.teamspace.models import User

LedgerEntry = Union[GroupLedgerEntry, AgencyLedgerEntry]
ENTRY_TYPES = (ENTRY_INCOME, ENTRY_EXPENSE)
_CENTS = Decimal("0.01")
MAX_AMOUNT = Decimal("99999999.99")


@dataclass(frozen=True)
class LedgerSummary:
    income: Decimal
    expense: Decimal

    @property
    def balance(self) -> Decimal:
        return self.income - self.expense


def parse_amount(raw: str | None) -> Decimal | None:
    try:
        value = Decimal((raw or "").strip())
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def parse_entry_date(raw: str | None) -> date | None:
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        # HTML <input type="date"> uses YYYY-MM-DD.
        return date.fromisoformat(raw[:10])
    except ValueError:
        return None


def validate_ledger_payload(payload: dict) -> list[str]:
    errors = []
    if not (payload.get("description") or "").strip():
        errors.append("Description is required.")
    amount = parse_amount(payload.get("amount"))
    if amount is None:
        errors.append("Amount must be a number.")
    elif amount <= 0:
        errors.append("Amount must be greater than zero.")
    elif amount > MAX_AMOUNT:
        errors.append("Amount is too large.")
    if (payload.get("type") or "").strip() not in ENTRY_TYPES:
        errors.append("Type must be income or expense.")
    if parse_entry_date(payload.get("date")) is None:
        errors.append("Date is required (YYYY-MM-DD).")
    return errors


def signed_amount(entry: LedgerEntry) -> Decimal:
    amount = Decimal(entry.amount)
    return amount if entry.type == ENTRY_INCOME else -amount


def ledger_summary(entries: Iterable[LedgerEntry]) -> LedgerSummary:
    income = Decimal("0.00")
    expense = Decimal("0.00")
    for e in entries:
        if e.type == ENTRY_INCOME:
            income += Decimal(e.amount)
        else:
            expense += Decimal(e.amount)
    return LedgerSummary(income=income, expense=expense)


def _filtered(q, model, search: str = "", type_filter: str = ""):
    if search:
        q = q.filter(model.description.ilike(f"%{search}%"))
    if type_filter in ENTRY_TYPES:
        q = q.filter(model.type == type_filter)
    return q.order_by(model.date.desc(), model.id.desc())


def list_group_entries(s: "Session", search: str = "", type_filter: str = "") -> list[GroupLedgerEntry]:
    return _filtered(s.query(GroupLedgerEntry), GroupLedgerEntry, search, type_filter).all()


def list_agency_entries(s: "Session", agency_id: int, search: str = "", type_filter: str = "") -> list[AgencyLedgerEntry]:
    q = s.query(AgencyLedgerEntry).filter(AgencyLedgerEntry.agency_id == agency_id)
    return _filtered(q, AgencyLedgerEntry, search, type_filter).all()


def _apply_payload(entry: LedgerEntry, payload: dict) -> None:
    entry.description = (payload.get("description") or "").strip()
    entry.amount = parse_amount(payload.get("amount"))  # type: ignore[assignment]
    entry.type = (payload.get("type") or "").strip()
    entry.date = parse_entry_date(payload.get("date"))  # type: ignore[assignment]


def ensure_can_manage(user: "User", entry: LedgerEntry) -> None:
    if isinstance(entry, AgencyLedgerEntry):
        ensure(can_manage_agency_ledger(user, entry.agency_id), "You can only manage your own agency's ledger.")
    else:
        ensure(can_manage_group_ledger(user), "Only core members can manage the group ledger.")


def create_entry(s: "Session", payload: dict, user: "User", agency_id: int | None = None) -> LedgerEntry:
    entry: LedgerEntry
    if agency_id is None:
        entry = GroupLedgerEntry(added_by=user.id)
    else:
        entry = AgencyLedgerEntry(agency_id=agency_id, added_by=user.id)
    ensure_can_manage(user, entry)
    _apply_payload(entry, payload)
    s.add(entry)
    s.flush()
    scope = "group" if agency_id is None else f"agency {agency_id}"
    record_event(
        s,
        event_type="ledger_entry_created",
        details=f"{entry.type.title()} of {entry.amount} recorded in {scope} ledger: {entry.description}",
        actor=user,
    )
    return entry


def update_entry(s: "Session", entry: LedgerEntry, payload: dict, user: "User") -> LedgerEntry:
    ensure_can_manage(user, entry)
    _apply_payload(entry, payload)
    return entry


def delete_entry(s: "Session", entry: LedgerEntry, user: "User") -> None:
    ensure_can_manage(user, entry)
    s.delete(entry)
