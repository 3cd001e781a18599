"""Test data factories for Topicdesk Core.

This module provides builders for Bot API payloads, session rows and an
in-memory ``BotTransport``. Use these instead of hand-writing update
dicts in tests for consistency.
"""

import asyncio
from typing import Any, Optional

from sqlalchemy.orm import Session

from topicdesk_core.domain.errors import TransportError
from topicdesk_core.domain.models import UserSession, VerificationState
from topicdesk_core.providers.base import BotTransport, MediaKind
from topicdesk_core.providers.telegram.schemas import (
    CallbackQuery,
    Message,
    Update,
)

ADMIN_GROUP_ID = "-1001234567890"
ADMIN_ID = "900"
USER_ID = "42"
BASE_DATE = 1_700_000_000

THREAD_NOT_FOUND = "Bad Request: message thread not found"


# -----------------------------------------------------------------------------
# Fake Transport
# -----------------------------------------------------------------------------


class FakeTransport(BotTransport):
    """Records every outbound call and simulates the forum group.

    Threads are numbered from 100. Copies into a deleted thread fail the
    way the real platform does. ``fail_next`` queues one-off failures
    per method.
    """

    def __init__(self):
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.topics: dict[str, str] = {}
        self.deleted_threads: set[str] = set()
        self._failures: dict[str, list[str]] = {}
        self._next_thread = 100
        self._next_message = 5000

    # -- test helpers ---------------------------------------------------------

    def fail_next(self, method: str, description: str = "Bad Request", times: int = 1) -> None:
        self._failures.setdefault(method, []).extend([description] * times)

    def delete_thread(self, thread_id: str) -> None:
        self.deleted_threads.add(str(thread_id))

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    def texts_to(self, chat_id: int | str) -> list[str]:
        return [
            kwargs["text"]
            for kwargs in self.calls_to("send_message")
            if str(kwargs["chat_id"]) == str(chat_id)
        ]

    def thread_texts(self, thread_id: str) -> list[str]:
        return [
            kwargs["text"]
            for kwargs in self.calls_to("send_message")
            if kwargs.get("thread_id") == str(thread_id)
        ]

    def _record(self, method: str, **kwargs: Any) -> None:
        self.calls.append((method, kwargs))
        queued = self._failures.get(method)
        if queued:
            raise TransportError(queued.pop(0), method=method, error_code=400)

    def _message_result(self, chat_id: int | str) -> dict[str, Any]:
        self._next_message += 1
        return {"message_id": self._next_message, "chat": {"id": chat_id}}

    # -- BotTransport ---------------------------------------------------------

    async def send_message(self, chat_id, text, thread_id=None, parse_mode=None, reply_markup=None):
        self._record(
            "send_message",
            chat_id=chat_id,
            text=text,
            thread_id=thread_id,
            parse_mode=parse_mode,
            reply_markup=reply_markup,
        )
        return self._message_result(chat_id)

    async def copy_message(self, chat_id, from_chat_id, message_id, thread_id=None):
        self._record(
            "copy_message",
            chat_id=chat_id,
            from_chat_id=from_chat_id,
            message_id=message_id,
            thread_id=thread_id,
        )
        if thread_id is not None and str(thread_id) in self.deleted_threads:
            raise TransportError(THREAD_NOT_FOUND, method="copy_message", error_code=400)
        return {"message_id": self._next_message + 1}

    async def create_forum_topic(self, chat_id, name):
        self._record("create_forum_topic", chat_id=chat_id, name=name)
        # Yield so concurrent creations interleave like real network calls
        await asyncio.sleep(0)
        thread_id = str(self._next_thread)
        self._next_thread += 1
        self.topics[thread_id] = name
        return thread_id

    async def edit_forum_topic(self, chat_id, thread_id, name):
        self._record("edit_forum_topic", chat_id=chat_id, thread_id=thread_id, name=name)
        self.topics[str(thread_id)] = name

    async def pin_chat_message(self, chat_id, message_id, thread_id=None):
        self._record("pin_chat_message", chat_id=chat_id, message_id=message_id, thread_id=thread_id)

    async def edit_message_text(
        self, chat_id, message_id, text, parse_mode=None, reply_markup=None
    ):
        self._record(
            "edit_message_text",
            chat_id=chat_id,
            message_id=message_id,
            text=text,
            parse_mode=parse_mode,
            reply_markup=reply_markup,
        )

    async def edit_message_reply_markup(self, chat_id, message_id, reply_markup):
        self._record(
            "edit_message_reply_markup",
            chat_id=chat_id,
            message_id=message_id,
            reply_markup=reply_markup,
        )

    async def answer_callback_query(self, callback_query_id, text=None, show_alert=False):
        self._record(
            "answer_callback_query",
            callback_query_id=callback_query_id,
            text=text,
            show_alert=show_alert,
        )

    async def send_media(self, kind: MediaKind, chat_id, file_id, caption=None):
        self._record("send_media", kind=kind, chat_id=chat_id, file_id=file_id, caption=caption)
        return self._message_result(chat_id)


# -----------------------------------------------------------------------------
# Bot API Payload Builders
# -----------------------------------------------------------------------------


def user_payload(
    user_id: int | str = USER_ID,
    first_name: str = "Alice",
    last_name: Optional[str] = None,
    username: Optional[str] = "alice",
    is_bot: bool = False,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": int(user_id),
        "is_bot": is_bot,
        "first_name": first_name,
    }
    if last_name is not None:
        payload["last_name"] = last_name
    if username is not None:
        payload["username"] = username
    return payload


def private_message(
    text: Optional[str] = "hello",
    user_id: int | str = USER_ID,
    message_id: int = 1,
    date: int = BASE_DATE,
    sender: Optional[dict[str, Any]] = None,
    **fields: Any,
) -> Message:
    """A message in the user's private chat with the bot."""
    payload: dict[str, Any] = {
        "message_id": message_id,
        "date": date,
        "chat": {"id": int(user_id), "type": "private"},
        "from": sender or user_payload(user_id),
    }
    if text is not None:
        payload["text"] = text
    payload.update(fields)
    return Message.model_validate(payload)


def group_message(
    thread_id: Optional[int | str],
    text: Optional[str] = "reply from support",
    from_id: int | str = ADMIN_ID,
    message_id: int = 700,
    is_bot: bool = False,
    **fields: Any,
) -> Message:
    """A message posted in the admin forum group."""
    payload: dict[str, Any] = {
        "message_id": message_id,
        "date": BASE_DATE,
        "chat": {"id": int(ADMIN_GROUP_ID), "type": "supergroup", "title": "Support"},
        "from": user_payload(from_id, first_name="Admin", username="admin", is_bot=is_bot),
    }
    if thread_id is not None:
        payload["message_thread_id"] = int(thread_id)
        payload["is_topic_message"] = True
    if text is not None:
        payload["text"] = text
    payload.update(fields)
    return Message.model_validate(payload)


def callback_query(
    data: str,
    from_id: int | str = ADMIN_ID,
    message: Optional[Message] = None,
    query_id: str = "cbq-1",
) -> CallbackQuery:
    payload: dict[str, Any] = {
        "id": query_id,
        "from": user_payload(from_id, first_name="Admin", username="admin"),
        "data": data,
    }
    query = CallbackQuery.model_validate(payload)
    if message is not None:
        query.message = message
    return query


def make_update(
    message: Optional[Message] = None,
    edited_message: Optional[Message] = None,
    callback: Optional[CallbackQuery] = None,
    update_id: int = 1,
) -> Update:
    return Update(
        update_id=update_id,
        message=message,
        edited_message=edited_message,
        callback_query=callback,
    )


def update_payload(text: str = "hello", update_id: int = 1) -> dict[str, Any]:
    """Raw webhook body for a private text message."""
    return {
        "update_id": update_id,
        "message": {
            "message_id": 1,
            "date": BASE_DATE,
            "chat": {"id": int(USER_ID), "type": "private"},
            "from": user_payload(),
            "text": text,
        },
    }


# -----------------------------------------------------------------------------
# Session Factory
# -----------------------------------------------------------------------------


def create_user_session(
    session: Session,
    user_id: str = USER_ID,
    state: str = VerificationState.VERIFIED,
    thread_id: Optional[str] = None,
    is_blocked: bool = False,
    block_count: int = 0,
    profile: Optional[dict[str, Any]] = None,
) -> UserSession:
    """Create a UserSession record for testing."""
    user_session = UserSession(
        user_id=str(user_id),
        state=state,
        thread_id=thread_id,
        is_blocked=is_blocked,
        block_count=block_count,
        profile_json=profile,
    )
    session.add(user_session)
    session.commit()
    return user_session
