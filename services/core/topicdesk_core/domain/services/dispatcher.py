"""Update dispatcher.

Entry point for one webhook update. Classifies the event, wires the
session store, gatekeeping pipeline, relay engine and admin console
together, and isolates failures so one bad update never affects the
next.

Usage:
    dispatcher = UpdateDispatcher(db=session, transport=client, settings=settings)
    await dispatcher.dispatch(Update.model_validate(payload))
"""

from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from topicdesk_core.config import Settings
from topicdesk_core.domain.callback_data import ConfigCallback, decode_callback
from topicdesk_core.domain.errors import (
    NotFoundError,
    PermissionDeniedError,
    TransportError,
    ValidationError,
)
from topicdesk_core.domain.models import UserSession
from topicdesk_core.domain.services.admin_console import AdminConsole
from topicdesk_core.domain.services.admin_sessions import AdminSessionStore
from topicdesk_core.domain.services.gatekeeping import GateAction, GatekeepingPipeline
from topicdesk_core.domain.services.relay import RelayEngine
from topicdesk_core.domain.services.rules import ConfigRepository
from topicdesk_core.domain.services.sessions import SessionStore
from topicdesk_core.observability import EventContext, get_logger
from topicdesk_core.providers.base import BotTransport
from topicdesk_core.providers.telegram.schemas import (
    CallbackQuery,
    Message,
    Update,
    User,
)

logger = get_logger(__name__)

START_COMMANDS = ("/start", "/help")


class EventKind(str, Enum):
    """Inbound event classes."""

    PRIVATE_MESSAGE = "private_message"
    EDITED_MESSAGE = "edited_message"
    ADMIN_GROUP_MESSAGE = "admin_group_message"
    CALLBACK = "callback"
    IGNORED = "ignored"


def classify_update(update: Update, admin_group_id: str) -> EventKind:
    if update.callback_query is not None:
        return EventKind.CALLBACK
    if update.edited_message is not None:
        if update.edited_message.chat.type == "private":
            return EventKind.EDITED_MESSAGE
        return EventKind.IGNORED

    message = update.message
    if message is None:
        return EventKind.IGNORED
    if message.chat.type == "private":
        return EventKind.PRIVATE_MESSAGE
    if admin_group_id and str(message.chat.id) == str(admin_group_id):
        return EventKind.ADMIN_GROUP_MESSAGE
    return EventKind.IGNORED


def command_of(message: Message) -> Optional[str]:
    """Leading bot command without any ``@botname`` suffix."""
    text = (message.text or "").strip()
    if not text.startswith("/"):
        return None
    return text.split()[0].split("@")[0].lower()


def profile_changed(session: UserSession, user: User) -> bool:
    """True if the sender's name or handle differs from the cached profile."""
    profile = session.profile_json
    if not profile or not session.thread_id:
        return False
    return profile.get("name") != user.full_name or profile.get("handle") != user.handle


class UpdateDispatcher:
    """Routes one update through the relay services."""

    def __init__(self, db: Session, transport: BotTransport, settings: Settings):
        """Initialize the dispatcher.

        Args:
            db: SQLAlchemy database session, owned by the caller.
            transport: Messaging platform transport.
            settings: Application settings.
        """
        self.db = db
        self.transport = transport
        self.settings = settings

        self.sessions = SessionStore(db)
        self.config = ConfigRepository(db, settings)
        self.pipeline = GatekeepingPipeline(self.sessions, self.config)
        self.relay = RelayEngine(self.sessions, transport, settings.admin_group_id)
        self.console = AdminConsole(self.config, AdminSessionStore(db), transport)

    async def dispatch(self, update: Update) -> EventKind:
        """Handle one update. Never raises; failures are logged."""
        kind = classify_update(update, self.settings.admin_group_id)
        context = EventContext(update_id=update.update_id, event_kind=kind.value)

        try:
            if kind == EventKind.PRIVATE_MESSAGE:
                await self.handle_private_message(update.message, context)
            elif kind == EventKind.EDITED_MESSAGE:
                await self.handle_edited_message(update.edited_message, context)
            elif kind == EventKind.ADMIN_GROUP_MESSAGE:
                await self.handle_admin_group_message(update.message, context)
            elif kind == EventKind.CALLBACK:
                await self.handle_callback(update.callback_query, context)
            else:
                logger.debug("Ignoring update", context=context)
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Update handling failed: {e}",
                context=context,
                exc_info=True,
                error_type=type(e).__name__,
            )
        return kind

    # -------------------------------------------------------------------------
    # Private chat
    # -------------------------------------------------------------------------

    async def handle_private_message(self, message: Message, context: EventContext) -> None:
        user = message.from_user
        if user is None or user.is_bot:
            return
        user_id = str(user.id)
        context.user_id = user_id
        command = command_of(message)

        if self.settings.is_admin(user_id):
            if command in START_COMMANDS:
                await self.console.open_main_menu(user_id, message.chat.id)
                return
            if await self.console.consume_input(user_id, message):
                return
            session = self.sessions.force_verify(user_id)
        else:
            session = self.sessions.get_or_create(user_id)

        if command in START_COMMANDS:
            if session.is_blocked:
                return
            for reply in self.pipeline.start_verification(session):
                if reply:
                    await self.transport.send_message(message.chat.id, reply)
            return

        result = self.pipeline.evaluate(message, session)
        if result.reply_text:
            await self.transport.send_message(message.chat.id, result.reply_text)
        if result.action != GateAction.FORWARD:
            logger.info(
                "Message stopped by gatekeeping",
                context=context,
                stage=result.stage,
                action=result.action.value,
            )
            return

        context.thread_id = session.thread_id
        if profile_changed(session, user):
            await self.relay.refresh_profile(session, user)

        outcome = await self.relay.forward(message, session)
        context.thread_id = session.thread_id
        logger.info("Message relayed", context=context, outcome=outcome.value)

    async def handle_edited_message(self, message: Message, context: EventContext) -> None:
        user = message.from_user
        if user is None or user.is_bot:
            return
        context.user_id = str(user.id)

        session = self.sessions.get(str(user.id))
        if session is None or session.is_blocked:
            return
        report = await self.relay.reconcile_edit(message)
        if report is not None:
            logger.info("Edit reported to thread", context=context)

    # -------------------------------------------------------------------------
    # Admin group
    # -------------------------------------------------------------------------

    async def handle_admin_group_message(
        self, message: Message, context: EventContext
    ) -> None:
        # Replies in the General topic carry a thread id but are not topic messages
        if message.message_thread_id is None or not message.is_topic_message:
            return
        if message.from_user is None or message.from_user.is_bot:
            return
        context.thread_id = str(message.message_thread_id)
        delivered = await self.relay.relay_admin_reply(message)
        if delivered:
            logger.info("Admin reply relayed", context=context)

    # -------------------------------------------------------------------------
    # Buttons
    # -------------------------------------------------------------------------

    async def handle_callback(self, query: CallbackQuery, context: EventContext) -> None:
        context.user_id = str(query.from_user.id)
        try:
            callback = decode_callback(query.data or "")
        except ValidationError as e:
            logger.warning(f"Undecodable callback data: {e}", context=context)
            await self._answer(query.id, "Unknown action.", show_alert=True)
            return

        if isinstance(callback, ConfigCallback):
            try:
                self._require_admin(query.from_user)
            except PermissionDeniedError as e:
                logger.warning(str(e), context=context)
                await self._answer(query.id, "⛔ Only admins can change settings.", show_alert=True)
                return
            await self.console.handle_callback(query, callback)
            return

        card = query.message
        if card is None or str(card.chat.id) != str(self.settings.admin_group_id):
            await self._answer(query.id, "This button only works in the admin group.")
            return

        if callback.action == "pin_card":
            await self.relay.pin_card(query.id, card)
            return

        try:
            if callback.action == "block":
                await self.relay.block_user(callback.user_id, card)
                answer = "User blocked."
            else:
                await self.relay.unblock_user(callback.user_id, card)
                answer = "User unblocked."
        except NotFoundError:
            await self._answer(query.id, "User not found.", show_alert=True)
            return
        logger.info(f"Thread control {callback.action}", context=context, target=callback.user_id)
        await self._answer(query.id, answer)

    def _require_admin(self, user: User) -> None:
        if not self.settings.is_admin(user.id):
            raise PermissionDeniedError(f"user {user.id} is not an admin")

    async def _answer(self, query_id: str, text: str, show_alert: bool = False) -> None:
        try:
            await self.transport.answer_callback_query(query_id, text=text, show_alert=show_alert)
        except TransportError as e:
            logger.warning(f"Could not answer callback {query_id}: {e.description}")
