"""initial teamspace schema

Revision ID: 4e1a7c2b9d30
Revises:
Create Date: 2026-10-17 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4e1a7c2b9d30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users/agencies, auth sessions, log book, chat, journal, notices, ledgers and todos."""
    # Check if tables already exist (idempotent)
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    if "agencies" not in existing_tables:
        op.create_table(
            "agencies",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False, unique=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("email", sa.String(320), nullable=False, unique=True),
            sa.Column("password_hash", sa.String(255), nullable=False),
            sa.Column("role", sa.String(32), nullable=False, server_default="agency_member"),
            sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id", ondelete="SET NULL"), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("role IN ('core_member', 'agency_member')", name="ck_users_role"),
        )

    if "auth_sessions" not in existing_tables:
        op.create_table(
            "auth_sessions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("token", sa.String(64), nullable=False, unique=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("last_seen_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_auth_sessions_user_id", "auth_sessions", ["user_id"])

    if "log_book_entries" not in existing_tables:
        op.create_table(
            "log_book_entries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("request_id", sa.String(64), nullable=True),
            sa.Column("event_type", sa.String(64), nullable=False),
            sa.Column("details", sa.Text(), nullable=False),
            sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("actor_name", sa.String(255), nullable=True),
        )
        op.create_index("ix_log_book_entries_created_at", "log_book_entries", ["created_at"])
        op.create_index("ix_log_book_entries_event_type", "log_book_entries", ["event_type"])

    if "channels" not in existing_tables:
        op.create_table(
            "channels",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("type", sa.String(16), nullable=False),
            sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id", ondelete="CASCADE"), nullable=True, unique=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("type IN ('group', 'agency')", name="ck_channels_type"),
        )

    if "messages" not in existing_tables:
        op.create_table(
            "messages",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("channel_id", sa.Integer(), sa.ForeignKey("channels.id", ondelete="CASCADE"), nullable=False),
            sa.Column("sender_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=True),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("attachment_url", sa.String(1024), nullable=True),
            sa.Column("client_id", sa.String(64), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_messages_channel_id", "messages", ["channel_id"])
        op.create_index("ix_messages_sender_id", "messages", ["sender_id"])
        op.create_index("ix_messages_created_at", "messages", ["created_at"])

    if "journal_entries" not in existing_tables:
        op.create_table(
            "journal_entries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("author_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_journal_entries_author_id", "journal_entries", ["author_id"])
        op.create_index("ix_journal_entries_created_at", "journal_entries", ["created_at"])

    if "notices" not in existing_tables:
        op.create_table(
            "notices",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("posted_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_notices_created_at", "notices", ["created_at"])

    if "group_ledger_entries" not in existing_tables:
        op.create_table(
            "group_ledger_entries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("description", sa.String(512), nullable=False),
            sa.Column("amount", sa.Numeric(10, 2), nullable=False),
            sa.Column("type", sa.String(16), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("added_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("type IN ('income', 'expense')", name="ck_group_ledger_type"),
        )
        op.create_index("ix_group_ledger_entries_added_by", "group_ledger_entries", ["added_by"])

    if "agency_ledger_entries" not in existing_tables:
        op.create_table(
            "agency_ledger_entries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False),
            sa.Column("description", sa.String(512), nullable=False),
            sa.Column("amount", sa.Numeric(10, 2), nullable=False),
            sa.Column("type", sa.String(16), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("added_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("type IN ('income', 'expense')", name="ck_agency_ledger_type"),
        )
        op.create_index("ix_agency_ledger_entries_agency_id", "agency_ledger_entries", ["agency_id"])

    if "todos" not in existing_tables:
        op.create_table(
            "todos",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("assigned_to", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=True),
            sa.Column("agency_id", sa.Integer(), sa.ForeignKey("agencies.id", ondelete="CASCADE"), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=False),
            sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.CheckConstraint("status IN ('pending', 'completed')", name="ck_todos_status"),
        )
        op.create_index("ix_todos_assigned_to", "todos", ["assigned_to"])
        op.create_index("ix_todos_agency_id", "todos", ["agency_id"])
        op.create_index("ix_todos_due_date", "todos", ["due_date"])
        op.create_index("ix_todos_status", "todos", ["status"])


def downgrade() -> None:
    for table in (
        "todos",
        "agency_ledger_entries",
        "group_ledger_entries",
        "notices",
        "journal_entries",
        "messages",
        "channels",
        "log_book_entries",
        "auth_sessions",
        "users",
        "agencies",
    ):
        op.drop_table(table)
