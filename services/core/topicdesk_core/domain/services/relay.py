"""Relay engine.

Handles the relay-thread lifecycle for each user and moves messages
between the user's private chat and their thread in the admin group:

- Forwarding: copy into the bound thread; on failure drop the binding,
  create a replacement thread and copy exactly once more.
- Edits: report the previous ledger text next to the new text.
- Profile changes: rename the thread and post a fresh profile card.
- Admin replies: mirror thread messages back to the user, falling back
  to a direct send by file reference.
- Manual block/unblock and card pinning from profile-card buttons.

Thread creation is not idempotent. Two events racing for the same
user before the binding is written create two threads; the later
binding wins and the earlier thread is orphaned.
"""

import html
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from topicdesk_core.domain.callback_data import ThreadCallback, encode_callback
from topicdesk_core.domain.errors import TransportError
from topicdesk_core.domain.models import UserSession
from topicdesk_core.domain.services.sessions import SessionStore, utc_from_timestamp
from topicdesk_core.providers.base import BotTransport, MediaKind
from topicdesk_core.providers.telegram.schemas import Message, User

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================


THREAD_NAME_MAX_LENGTH = 128

CREATE_FAILED_NOTICE = (
    "Sorry, we couldn't reach support right now (thread creation failed). "
    "Please try again later."
)
RECREATE_FAILED_NOTICE = (
    "Sorry, we couldn't open a new support thread. Please try again later."
)
FORWARD_FAILED_NOTICE = (
    "Sorry, your message could not be delivered. "
    "Please try again later or contact an admin."
)
UNSUPPORTED_CONTENT_NOTICE = (
    "An admin sent content the bot cannot deliver directly "
    "(for example a poll or special media)."
)
PROFILE_UPDATED_NOTICE = "🔔 <b>User profile updated</b>\nThe thread name was updated."

ORIGINAL_UNAVAILABLE = "[original content unavailable / non-text content]"
SENT_AT_UNAVAILABLE = "[send time unavailable]"
NON_TEXT_CONTENT = "[non-text / media caption content]"

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S UTC"


class ForwardOutcome(str, Enum):
    """How a forward attempt ended."""

    FORWARDED = "forwarded"
    CREATE_FAILED = "create_failed"
    RECREATE_FAILED = "recreate_failed"
    RETRY_FAILED = "retry_failed"


@dataclass
class EditReport:
    """What was posted to the thread for an edited message."""

    original_text: str
    original_sent_at: Optional[datetime]
    new_text: str
    notification: str


# =============================================================================
# RENDERING HELPERS
# =============================================================================


def format_timestamp(value: Optional[datetime]) -> str:
    return value.strftime(TIMESTAMP_FORMAT) if value else SENT_AT_UNAVAILABLE


def thread_name(user: User) -> str:
    """Composite thread name ``<display name> | <user id>``, truncated."""
    return f"{user.full_name.strip()} | {user.id}"[:THREAD_NAME_MAX_LENGTH]


def profile_card(user: User, first_seen_at: Optional[int]) -> str:
    first_seen = (
        format_timestamp(utc_from_timestamp(first_seen_at))
        if first_seen_at
        else format_timestamp(datetime.now(timezone.utc))
    )
    return (
        "<b>👤 User profile</b>\n"
        "---\n"
        f"• Name: <code>{html.escape(user.full_name)}</code>\n"
        f"• Username: <code>{html.escape(user.handle or 'none')}</code>\n"
        f"• ID: <code>{user.id}</code>\n"
        f"• First contact: <code>{first_seen}</code>"
    )


def card_keyboard(user_id: str, is_blocked: bool) -> dict[str, Any]:
    """Block/unblock and pin controls shown under the profile card."""
    if is_blocked:
        block_button = {
            "text": "✅ Unblock",
            "callback_data": encode_callback(ThreadCallback("unblock", str(user_id))),
        }
    else:
        block_button = {
            "text": "🚫 Block",
            "callback_data": encode_callback(ThreadCallback("block", str(user_id))),
        }
    pin_button = {
        "text": "📌 Pin card",
        "callback_data": encode_callback(ThreadCallback("pin_card", str(user_id))),
    }
    return {"inline_keyboard": [[block_button], [pin_button]]}


def edit_notification(original_text: str, original_time: str, new_text: str) -> str:
    return (
        "⚠️ <b>User edited a message</b>\n"
        "---\n"
        "<b>Original:</b>\n"
        f"<code>{html.escape(original_text)}</code>\n\n"
        "<b>Originally sent at:</b>\n"
        f"<code>{original_time}</code>\n\n"
        "<b>New content:</b>\n"
        f"{html.escape(new_text)}"
    )


def media_reference(message: Message) -> Optional[tuple[MediaKind, str]]:
    """The attachment to re-send by file id, if the message has one."""
    if message.photo:
        return MediaKind.PHOTO, message.photo[-1].file_id
    # Animations also carry a document; check them first to keep the type
    if message.animation:
        return MediaKind.ANIMATION, message.animation.file_id
    if message.document:
        return MediaKind.DOCUMENT, message.document.file_id
    if message.video:
        return MediaKind.VIDEO, message.video.file_id
    if message.audio:
        return MediaKind.AUDIO, message.audio.file_id
    if message.voice:
        return MediaKind.VOICE, message.voice.file_id
    if message.sticker:
        return MediaKind.STICKER, message.sticker.file_id
    return None


# =============================================================================
# ENGINE
# =============================================================================


class RelayEngine:
    """Thread lifecycle and message relay between users and the admin group."""

    def __init__(
        self,
        sessions: SessionStore,
        transport: BotTransport,
        admin_group_id: str,
    ):
        """Initialize the relay engine.

        Args:
            sessions: Session store for bindings and the ledger.
            transport: Messaging platform transport.
            admin_group_id: Chat id of the forum group holding the threads.
        """
        self.sessions = sessions
        self.transport = transport
        self.admin_group_id = admin_group_id

    # -------------------------------------------------------------------------
    # Thread lifecycle
    # -------------------------------------------------------------------------

    async def ensure_thread(
        self, session: UserSession, user: User, first_seen_at: Optional[int] = None
    ) -> str:
        """Return the bound thread, creating one if the user has none.

        Raises:
            TransportError: If thread creation fails.
        """
        if session.thread_id:
            return session.thread_id
        return await self.create_thread(session, user, first_seen_at)

    async def create_thread(
        self, session: UserSession, user: User, first_seen_at: Optional[int] = None
    ) -> str:
        """Create a thread, bind it and post the profile card.

        Raises:
            TransportError: If thread creation fails. A failure to post
                the card is logged and does not undo the binding.
        """
        user_id = session.user_id
        thread_id = await self.transport.create_forum_topic(
            self.admin_group_id, thread_name(user)
        )
        self.sessions.update_profile(user_id, user.full_name, user.handle, first_seen_at)
        self.sessions.bind_thread(user_id, thread_id)
        logger.info(f"Bound thread {thread_id} to user {user_id}")

        first_seen = (session.profile_json or {}).get("first_seen_at", first_seen_at)
        try:
            await self.transport.send_message(
                self.admin_group_id,
                profile_card(user, first_seen),
                thread_id=thread_id,
                parse_mode="HTML",
                reply_markup=card_keyboard(user_id, session.is_blocked),
            )
        except TransportError as e:
            logger.warning(f"Could not post profile card to thread {thread_id}: {e.description}")
        return thread_id

    # -------------------------------------------------------------------------
    # Forwarding
    # -------------------------------------------------------------------------

    async def forward(self, message: Message, session: UserSession) -> ForwardOutcome:
        """Copy a user's message into their thread.

        A failed copy invalidates the thread: the binding is cleared, a
        replacement thread is created and the copy is retried once. If
        that also fails the user is told and left without a thread so
        the next message starts over.
        """
        user = message.from_user or User(id=message.chat.id)
        user_id = session.user_id

        thread_id = session.thread_id
        if not thread_id:
            try:
                thread_id = await self.create_thread(session, user, message.date)
            except TransportError as e:
                logger.error(f"Thread creation failed for user {user_id}: {e.description}")
                await self._notify_user(user_id, CREATE_FAILED_NOTICE)
                return ForwardOutcome.CREATE_FAILED

        try:
            await self._copy_to_thread(message, thread_id)
        except TransportError as e:
            logger.warning(
                f"Copy to thread {thread_id} failed for user {user_id}, "
                f"recreating thread: {e.description}"
            )
            self.sessions.clear_thread(user_id, expected_thread_id=thread_id)

            try:
                thread_id = await self.create_thread(session, user, message.date)
            except TransportError as create_error:
                logger.error(
                    f"Thread recreation failed for user {user_id}: {create_error.description}"
                )
                await self._notify_user(user_id, RECREATE_FAILED_NOTICE)
                return ForwardOutcome.RECREATE_FAILED

            try:
                await self._copy_to_thread(message, thread_id)
            except TransportError as retry_error:
                logger.error(
                    f"Copy to new thread {thread_id} also failed for user {user_id}: "
                    f"{retry_error.description}"
                )
                self.sessions.clear_thread(user_id, expected_thread_id=thread_id)
                await self._notify_user(user_id, FORWARD_FAILED_NOTICE)
                return ForwardOutcome.RETRY_FAILED

        text = message.content_text
        if text:
            self.sessions.record_message(
                user_id, message.message_id, text, utc_from_timestamp(message.date)
            )
        return ForwardOutcome.FORWARDED

    async def _copy_to_thread(self, message: Message, thread_id: str) -> None:
        await self.transport.copy_message(
            self.admin_group_id,
            from_chat_id=message.chat.id,
            message_id=message.message_id,
            thread_id=thread_id,
        )

    async def _notify_user(self, user_id: str, text: str) -> None:
        try:
            await self.transport.send_message(user_id, text)
        except TransportError as e:
            logger.error(f"Could not notify user {user_id}: {e.description}")

    # -------------------------------------------------------------------------
    # Edits and profile changes
    # -------------------------------------------------------------------------

    async def reconcile_edit(self, edited: Message) -> Optional[EditReport]:
        """Post a before/after notice for an edited inbound message.

        Returns:
            The report, or None when the user has no thread.
        """
        user_id = str(edited.from_user.id if edited.from_user else edited.chat.id)
        session = self.sessions.get(user_id)
        if session is None or not session.thread_id:
            return None

        new_text = edited.content_text
        entry = self.sessions.get_message(user_id, edited.message_id)
        if entry is not None:
            original_text = entry.text or ORIGINAL_UNAVAILABLE
            original_sent_at: Optional[datetime] = entry.sent_at
            self.sessions.replace_message_text(user_id, edited.message_id, new_text or "")
        else:
            original_text = ORIGINAL_UNAVAILABLE
            original_sent_at = None

        report = EditReport(
            original_text=original_text,
            original_sent_at=original_sent_at,
            new_text=new_text or NON_TEXT_CONTENT,
            notification=edit_notification(
                original_text,
                format_timestamp(original_sent_at),
                new_text or NON_TEXT_CONTENT,
            ),
        )

        try:
            await self.transport.send_message(
                self.admin_group_id,
                report.notification,
                thread_id=session.thread_id,
                parse_mode="HTML",
            )
        except TransportError as e:
            logger.error(
                f"Could not post edit notice to thread {session.thread_id}: {e.description}"
            )
        return report

    async def refresh_profile(self, session: UserSession, user: User) -> bool:
        """Rename the bound thread and post a fresh profile card.

        Never creates a thread or touches the binding.

        Returns:
            True if the thread was updated and the cached profile replaced.
        """
        thread_id = session.thread_id
        if not thread_id:
            return False

        first_seen = (session.profile_json or {}).get("first_seen_at")
        try:
            await self.transport.edit_forum_topic(
                self.admin_group_id, thread_id, thread_name(user)
            )
            await self.transport.send_message(
                self.admin_group_id,
                PROFILE_UPDATED_NOTICE,
                thread_id=thread_id,
                parse_mode="HTML",
            )
            await self.transport.send_message(
                self.admin_group_id,
                profile_card(user, first_seen),
                thread_id=thread_id,
                parse_mode="HTML",
                reply_markup=card_keyboard(session.user_id, session.is_blocked),
            )
        except TransportError as e:
            logger.error(f"Could not refresh profile in thread {thread_id}: {e.description}")
            return False

        self.sessions.update_profile(session.user_id, user.full_name, user.handle)
        return True

    # -------------------------------------------------------------------------
    # Admin replies
    # -------------------------------------------------------------------------

    async def relay_admin_reply(self, message: Message) -> bool:
        """Deliver an admin's thread message to the bound user.

        Returns:
            True if something reached the user.
        """
        if message.message_thread_id is None:
            return False
        session = self.sessions.get_user_by_thread(str(message.message_thread_id))
        if session is None:
            return False
        user_id = session.user_id

        try:
            if message.text:
                await self.transport.send_message(user_id, message.text)
            else:
                await self.transport.copy_message(
                    user_id, from_chat_id=message.chat.id, message_id=message.message_id
                )
            return True
        except TransportError as e:
            logger.warning(f"Relay to user {user_id} failed, trying fallback: {e.description}")

        reference = media_reference(message)
        try:
            if reference is None:
                await self.transport.send_message(user_id, UNSUPPORTED_CONTENT_NOTICE)
            else:
                kind, file_id = reference
                await self.transport.send_media(kind, user_id, file_id, caption=message.caption)
            return True
        except TransportError as e:
            logger.error(f"Fallback relay to user {user_id} also failed: {e.description}")
            return False

    # -------------------------------------------------------------------------
    # Profile-card controls
    # -------------------------------------------------------------------------

    async def block_user(self, user_id: str, card_message: Message) -> UserSession:
        """Block a user from their profile card.

        Raises:
            NotFoundError: If the user has no session.
        """
        self.sessions.require(user_id)
        session = self.sessions.set_blocked(user_id, True)
        await self._refresh_card_controls(session, card_message)
        await self._confirm_in_thread(
            card_message,
            f"❌ <b>{html.escape(session.display_name)} has been blocked.</b>\n"
            "The bot will no longer accept their messages.",
        )
        return session

    async def unblock_user(self, user_id: str, card_message: Message) -> UserSession:
        """Unblock a user and reset their keyword-hit count.

        Raises:
            NotFoundError: If the user has no session.
        """
        self.sessions.require(user_id)
        session = self.sessions.set_blocked(user_id, False)
        await self._refresh_card_controls(session, card_message)
        await self._confirm_in_thread(
            card_message,
            f"✅ <b>{html.escape(session.display_name)} has been unblocked.</b>\n"
            "The bot accepts their messages again.",
        )
        return session

    async def pin_card(self, callback_query_id: str, card_message: Message) -> bool:
        """Pin the profile card in its thread.

        On failure the admin gets an alert carrying the transport's own
        description.
        """
        thread_id = (
            str(card_message.message_thread_id)
            if card_message.message_thread_id is not None
            else None
        )
        try:
            await self.transport.pin_chat_message(
                card_message.chat.id, card_message.message_id, thread_id=thread_id
            )
        except TransportError as e:
            logger.warning(f"Pinning card {card_message.message_id} failed: {e.description}")
            await self._answer(
                callback_query_id,
                "❌ Pin failed. Make sure the bot may pin messages in this group. "
                f"Error: {e.description}",
                show_alert=True,
            )
            return False

        await self._answer(callback_query_id, "📌 Profile card pinned in this thread.")
        return True

    async def _refresh_card_controls(self, session: UserSession, card_message: Message) -> None:
        try:
            await self.transport.edit_message_reply_markup(
                card_message.chat.id,
                card_message.message_id,
                card_keyboard(session.user_id, session.is_blocked),
            )
        except TransportError as e:
            logger.warning(f"Could not refresh card controls for {session.user_id}: {e.description}")

    async def _confirm_in_thread(self, card_message: Message, text: str) -> None:
        thread_id = (
            str(card_message.message_thread_id)
            if card_message.message_thread_id is not None
            else None
        )
        try:
            await self.transport.send_message(
                card_message.chat.id, text, thread_id=thread_id, parse_mode="HTML"
            )
        except TransportError as e:
            logger.warning(f"Could not post confirmation to thread {thread_id}: {e.description}")

    async def _answer(self, callback_query_id: str, text: str, show_alert: bool = False) -> None:
        try:
            await self.transport.answer_callback_query(
                callback_query_id, text=text, show_alert=show_alert
            )
        except TransportError as e:
            logger.warning(f"Could not answer callback {callback_query_id}: {e.description}")
