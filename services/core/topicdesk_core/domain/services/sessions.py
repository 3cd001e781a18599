"""Session store for relay users.

Durable mapping of user id <-> relay thread id <-> block/verification
state, plus the message ledger used to reconstruct pre-edit content.

Every mutation commits immediately. Cross-event coordination happens
only through these single-row writes; there is no in-process locking.

Usage:
    store = SessionStore(db=session)
    user = store.get_or_create("42")
    store.bind_thread("42", "1001")
    assert store.get_user_by_thread("1001").user_id == "42"
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from topicdesk_core.domain.errors import NotFoundError
from topicdesk_core.domain.models import (
    MessageLedgerEntry,
    UserSession,
    VerificationState,
)

logger = logging.getLogger(__name__)


def utc_from_timestamp(ts: int | float) -> datetime:
    """Convert a unix timestamp to a naive UTC datetime for storage."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


class SessionStore:
    """Service for user sessions and the message ledger."""

    def __init__(self, db: Session):
        """Initialize the session store.

        Args:
            db: SQLAlchemy database session.
        """
        self.db = db

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def get(self, user_id: str) -> Optional[UserSession]:
        return self.db.get(UserSession, str(user_id))

    def require(self, user_id: str) -> UserSession:
        """Get a session or raise ``NotFoundError``."""
        session = self.get(user_id)
        if session is None:
            raise NotFoundError(f"no session for user {user_id}")
        return session

    def get_or_create(self, user_id: str) -> UserSession:
        """Get a session, creating the default one on first contact."""
        user_id = str(user_id)
        session = self.get(user_id)
        if session is not None:
            return session

        session = UserSession(
            user_id=user_id,
            state=VerificationState.NEW,
            is_blocked=False,
            block_count=0,
        )
        self.db.add(session)
        try:
            self.db.commit()
        except IntegrityError:
            # Another event created the row first
            self.db.rollback()
            session = self.db.get(UserSession, user_id)
            if session is None:
                raise
        return session

    def advance_state(self, user_id: str, new_state: str) -> UserSession:
        """Move verification state forward; never moves it back."""
        session = self.get_or_create(user_id)
        order = VerificationState.ORDER
        if order[new_state] > order.get(session.state, 0):
            session.state = new_state
            self.db.commit()
        return session

    def force_verify(self, user_id: str) -> UserSession:
        """Mark a user verified regardless of state (admin bypass)."""
        session = self.get_or_create(user_id)
        if session.state != VerificationState.VERIFIED:
            session.state = VerificationState.VERIFIED
            self.db.commit()
        return session

    def increment_block_count(self, user_id: str) -> int:
        """Atomically add one keyword-block hit and return the new count."""
        self.db.execute(
            update(UserSession)
            .where(UserSession.user_id == str(user_id))
            .values(block_count=UserSession.block_count + 1)
        )
        self.db.commit()
        session = self.require(user_id)
        self.db.refresh(session)
        return session.block_count

    def set_blocked(self, user_id: str, blocked: bool) -> UserSession:
        """Block or unblock a user. Unblocking also resets the hit count."""
        session = self.get_or_create(user_id)
        session.is_blocked = blocked
        if not blocked:
            session.block_count = 0
        self.db.commit()
        return session

    def update_profile(
        self,
        user_id: str,
        name: str,
        handle: Optional[str],
        first_seen_at: Optional[int] = None,
    ) -> UserSession:
        """Replace the cached profile snapshot, keeping the first-seen time."""
        session = self.get_or_create(user_id)
        previous = session.profile_json or {}
        session.profile_json = {
            "name": name,
            "handle": handle,
            "first_seen_at": previous.get("first_seen_at", first_seen_at),
        }
        self.db.commit()
        return session

    # -------------------------------------------------------------------------
    # Thread binding
    # -------------------------------------------------------------------------

    def get_user_by_thread(self, thread_id: str) -> Optional[UserSession]:
        """Reverse lookup: which user is bound to ``thread_id``."""
        return (
            self.db.query(UserSession)
            .filter(UserSession.thread_id == str(thread_id))
            .first()
        )

    def bind_thread(self, user_id: str, thread_id: str) -> UserSession:
        """Bind ``thread_id`` to a user, replacing any previous binding.

        A thread id already bound to another user is released from that
        user first so the uniqueness invariant always holds.
        """
        thread_id = str(thread_id)
        self.db.execute(
            update(UserSession)
            .where(
                UserSession.thread_id == thread_id,
                UserSession.user_id != str(user_id),
            )
            .values(thread_id=None)
        )
        session = self.get_or_create(user_id)
        session.thread_id = thread_id
        self.db.commit()
        return session

    def clear_thread(self, user_id: str, expected_thread_id: Optional[str] = None) -> bool:
        """Drop a user's thread binding.

        With ``expected_thread_id`` the binding is cleared only if it still
        points at that thread, so a binding written by a concurrent event
        is left alone.

        Returns:
            True if a binding was cleared.
        """
        stmt = update(UserSession).where(
            UserSession.user_id == str(user_id),
            UserSession.thread_id.is_not(None),
        )
        if expected_thread_id is not None:
            stmt = stmt.where(UserSession.thread_id == str(expected_thread_id))
        result = self.db.execute(stmt.values(thread_id=None))
        self.db.commit()
        session = self.get(user_id)
        if session is not None:
            self.db.refresh(session)
        return result.rowcount > 0

    # -------------------------------------------------------------------------
    # Message ledger
    # -------------------------------------------------------------------------

    def get_message(self, user_id: str, message_id: int | str) -> Optional[MessageLedgerEntry]:
        return self.db.get(MessageLedgerEntry, (str(user_id), str(message_id)))

    def record_message(
        self,
        user_id: str,
        message_id: int | str,
        text: str,
        sent_at: datetime,
    ) -> MessageLedgerEntry:
        """Upsert the ledger entry for an inbound message."""
        entry = self.get_message(user_id, message_id)
        if entry is None:
            entry = MessageLedgerEntry(
                user_id=str(user_id),
                message_id=str(message_id),
                text=text,
                sent_at=sent_at,
            )
            self.db.add(entry)
        else:
            entry.text = text
            entry.sent_at = sent_at
        self.db.commit()
        return entry

    def replace_message_text(
        self, user_id: str, message_id: int | str, text: str
    ) -> Optional[MessageLedgerEntry]:
        """Overwrite an entry's text, keeping its original send time."""
        entry = self.get_message(user_id, message_id)
        if entry is None:
            return None
        entry.text = text
        self.db.commit()
        return entry
