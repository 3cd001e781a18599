"""Domain models for Topicdesk.

SQLAlchemy ORM models for the relay's durable state: scalar config,
user sessions (including the thread binding), the message ledger used
for edit tracking, and per-admin edit sessions.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


# =============================================================================
# ENUMS
# =============================================================================


class VerificationState(str):
    """User verification lifecycle values."""

    NEW = "new"
    PENDING = "pending_verification"
    VERIFIED = "verified"

    ORDER = {NEW: 0, PENDING: 1, VERIFIED: 2}


class AdminAction(str):
    """Admin edit session actions."""

    AWAITING_INPUT = "awaiting_input"


# =============================================================================
# MODELS
# =============================================================================


class ConfigEntry(Base):
    """Admin-editable scalar config and serialized rule lists."""

    __tablename__ = "config_entries"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class UserSession(Base):
    """One row per private-chat user.

    ``thread_id`` is unique when present: a relay thread belongs to at
    most one user at any time.
    """

    __tablename__ = "user_sessions"

    user_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    state: Mapped[str] = mapped_column(
        String(32), nullable=False, default=VerificationState.NEW
    )
    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    block_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    thread_id: Mapped[Optional[str]] = mapped_column(
        String(32), nullable=True, unique=True
    )
    profile_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def is_verified(self) -> bool:
        return self.state == VerificationState.VERIFIED

    @property
    def display_name(self) -> str:
        if self.profile_json and self.profile_json.get("name"):
            return self.profile_json["name"]
        return f"User {self.user_id}"


class MessageLedgerEntry(Base):
    """Last known text of an inbound message, keyed by (user, message).

    Holds the version preceding the newest edit so the relay thread can
    be shown a before/after diff.
    """

    __tablename__ = "message_ledger"

    user_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    message_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    sent_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("ix_message_ledger_user", "user_id"),)


class AdminEditSession(Base):
    """Pending "awaiting input" state for one admin."""

    __tablename__ = "admin_edit_sessions"

    admin_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    action: Mapped[str] = mapped_column(
        String(32), nullable=False, default=AdminAction.AWAITING_INPUT
    )
    key: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
