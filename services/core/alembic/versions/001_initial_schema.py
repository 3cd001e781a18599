"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates the relay tables:
- config_entries
- user_sessions (thread binding, verification and block state)
- message_ledger
- admin_edit_sessions
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Admin-editable config and serialized rule lists
    op.create_table(
        "config_entries",
        sa.Column("key", sa.String(64), primary_key=True),
        sa.Column("value", sa.Text, nullable=False),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )

    # User sessions
    op.create_table(
        "user_sessions",
        sa.Column("user_id", sa.String(32), primary_key=True),
        sa.Column(
            "state", sa.String(32), nullable=False, server_default="new"
        ),
        sa.Column("is_blocked", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("block_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("thread_id", sa.String(32), nullable=True),
        sa.Column("profile_json", sa.JSON, nullable=True),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("thread_id", name="uq_user_sessions_thread_id"),
    )

    # Message ledger for edit tracking
    op.create_table(
        "message_ledger",
        sa.Column("user_id", sa.String(32), primary_key=True),
        sa.Column("message_id", sa.String(32), primary_key=True),
        sa.Column("text", sa.Text, nullable=False),
        sa.Column("sent_at", sa.DateTime, nullable=False),
    )
    op.create_index("ix_message_ledger_user", "message_ledger", ["user_id"])

    # Admin edit sessions
    op.create_table(
        "admin_edit_sessions",
        sa.Column("admin_id", sa.String(32), primary_key=True),
        sa.Column(
            "action", sa.String(32), nullable=False, server_default="awaiting_input"
        ),
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column(
            "created_at", sa.DateTime, nullable=False, server_default=sa.func.now()
        ),
    )


def downgrade() -> None:
    op.drop_table("admin_edit_sessions")
    op.drop_index("ix_message_ledger_user", table_name="message_ledger")
    op.drop_table("message_ledger")
    op.drop_table("user_sessions")
    op.drop_table("config_entries")
