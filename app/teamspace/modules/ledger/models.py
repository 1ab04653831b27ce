from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.teamspace.models import Agency, Base, User

ENTRY_INCOME = "income"
ENTRY_EXPENSE = "expense"


class GroupLedgerEntry(Base):
    __tablename__ = "group_ledger_entries"
    __table_args__ = (
        CheckConstraint("type IN ('income', 'expense')", name="ck_group_ledger_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(String(512), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    added_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    added_by_user: Mapped[User | None] = relationship(lazy="selectin")


class AgencyLedgerEntry(Base):
    __tablename__ = "agency_ledger_entries"
    __table_args__ = (
        CheckConstraint("type IN ('income', 'expense')", name="ck_agency_ledger_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agency_id: Mapped[int] = mapped_column(ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(512), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    added_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    agency: Mapped[Agency] = relationship(lazy="selectin")
    added_by_user: Mapped[User | None] = relationship(lazy="selectin")
