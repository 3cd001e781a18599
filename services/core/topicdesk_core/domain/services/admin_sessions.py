"""Per-admin edit sessions.

An admin is either idle (no row) or awaiting input for one config key.
Starting a new edit replaces the previous one. The state lives in the
database so every worker process sees the same session.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from topicdesk_core.domain.models import AdminAction, AdminEditSession

logger = logging.getLogger(__name__)

# Suffix marking "append to this rule list" rather than "replace this scalar"
ADD_SUFFIX = "_add"


def add_target(list_key: str) -> str:
    return f"{list_key}{ADD_SUFFIX}"


def split_add_target(key: str) -> Optional[str]:
    """Return the list key for an add target, or None for scalar keys."""
    if key.endswith(ADD_SUFFIX):
        return key[: -len(ADD_SUFFIX)]
    return None


class AdminSessionStore:
    """Storage for admin edit sessions."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, admin_id: str) -> Optional[AdminEditSession]:
        return self.db.get(AdminEditSession, str(admin_id))

    def start(self, admin_id: str, key: str) -> AdminEditSession:
        """Put the admin in awaiting-input for ``key``, replacing any prior edit."""
        edit = self.get(admin_id)
        if edit is None:
            edit = AdminEditSession(
                admin_id=str(admin_id),
                action=AdminAction.AWAITING_INPUT,
                key=key,
            )
            self.db.add(edit)
        else:
            edit.action = AdminAction.AWAITING_INPUT
            edit.key = key
        self.db.commit()
        logger.debug(f"Admin {admin_id} awaiting input for {key}")
        return edit

    def clear(self, admin_id: str) -> bool:
        """Return the admin to idle.

        Returns:
            True if a pending edit was discarded.
        """
        edit = self.get(admin_id)
        if edit is None:
            return False
        self.db.delete(edit)
        self.db.commit()
        return True
