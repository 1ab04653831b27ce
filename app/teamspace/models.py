from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

ROLE_CORE_MEMBER = "core_member"
ROLE_AGENCY_MEMBER = "agency_member"


class Base(DeclarativeBase):
    pass


class Agency(Base):
    __tablename__ = "agencies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    members: Mapped[list["User"]] = relationship(back_populates="agency", lazy="selectin")


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role IN ('core_member', 'agency_member')", name="ck_users_role"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=ROLE_AGENCY_MEMBER)
    agency_id: Mapped[int | None] = mapped_column(ForeignKey("agencies.id", ondelete="SET NULL"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    agency: Mapped[Agency | None] = relationship(back_populates="members", lazy="selectin")

    @property
    def is_core_member(self) -> bool:
        return self.role == ROLE_CORE_MEMBER


class AuthSession(Base):
    """
    Server-side half of a signed-in session. The cookie only carries the token,
    so revoking this row signs the browser out on its next request.
    """

    __tablename__ = "auth_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped[User] = relationship(lazy="selectin")


class LogBookEntry(Base):
    """
    Append-only activity log shown to core members in the Log Book.
    """

    __tablename__ = "log_book_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow, index=True)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    event_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)  # e.g. "user_joined"
    details: Mapped[str] = mapped_column(Text, nullable=False)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.teamspace.modules.chat.models import Channel, Message  # noqa: E402,F401
from app.teamspace.modules.journal.models import JournalEntry  # noqa: E402,F401
from app.teamspace.modules.notices.models import Notice  # noqa: E402,F401
from app.teamspace.modules.ledger.models import AgencyLedgerEntry, GroupLedgerEntry  # noqa: E402,F401
from app.teamspace.modules.todos.models import Todo  # noqa: E402,F401
