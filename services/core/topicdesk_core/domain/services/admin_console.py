"""Admin configuration console.

Drives the menu screens from ``config:`` button presses and consumes
the next private message of an admin who is awaiting input. Every
button press is answered exactly once; input always returns the admin
to idle, whether it was accepted or not.
"""

import html
import logging
from typing import Optional

from topicdesk_core.domain.callback_data import ConfigCallback
from topicdesk_core.domain.errors import TransportError, ValidationError
from topicdesk_core.domain.services.admin_menus import (
    CANCEL_COMMAND,
    FILTER_SWITCHES,
    RULE_LIST_SUBMENU,
    SCALAR_SETTINGS,
    MenuView,
    add_prompt,
    edit_prompt,
    filter_menu,
    main_menu,
    rule_list,
    submenu,
)
from topicdesk_core.domain.services.admin_sessions import (
    AdminSessionStore,
    add_target,
    split_add_target,
)
from topicdesk_core.domain.services.rules import ConfigRepository, RuleKind
from topicdesk_core.providers.base import BotTransport
from topicdesk_core.providers.telegram.schemas import CallbackQuery, Message

logger = logging.getLogger(__name__)


def parse_threshold(text: str) -> int:
    """Validate admin input for the block threshold.

    Raises:
        ValidationError: Unless the text is a positive integer.
    """
    try:
        value = int(text.strip())
    except ValueError:
        raise ValidationError("the threshold must be a whole number")
    if value <= 0:
        raise ValidationError("the threshold must be greater than zero")
    return value


class AdminConsole:
    """Menu navigation and input handling for admins."""

    def __init__(
        self,
        config: ConfigRepository,
        edit_sessions: AdminSessionStore,
        transport: BotTransport,
    ):
        self.config = config
        self.edit_sessions = edit_sessions
        self.transport = transport

    async def open_main_menu(self, admin_id: str, chat_id: int | str) -> None:
        """Send the main menu as a new message, discarding any pending edit."""
        self.edit_sessions.clear(admin_id)
        await self._send_view(chat_id, main_menu())

    # -------------------------------------------------------------------------
    # Button presses
    # -------------------------------------------------------------------------

    async def handle_callback(self, query: CallbackQuery, callback: ConfigCallback) -> None:
        admin_id = str(query.from_user.id)
        try:
            view, answer = self._apply(admin_id, callback)
            show_alert = False
        except ValidationError as e:
            logger.warning(f"Rejected config callback {query.data!r} from {admin_id}: {e}")
            view, answer, show_alert = None, f"❌ {e}", True

        await self._answer(query.id, answer, show_alert)

        if view is not None and query.message is not None:
            try:
                await self.transport.edit_message_text(
                    query.message.chat.id,
                    query.message.message_id,
                    view.text,
                    parse_mode="HTML",
                    reply_markup=view.keyboard,
                )
            except TransportError as e:
                logger.warning(f"Could not update menu message: {e.description}")

    def _apply(
        self, admin_id: str, callback: ConfigCallback
    ) -> tuple[MenuView, Optional[str]]:
        action, key, value = callback.action, callback.key, callback.value

        if action == "edit":
            if key not in SCALAR_SETTINGS:
                raise ValidationError(f"unknown setting: {key}")
            self.edit_sessions.start(admin_id, key)
            return edit_prompt(key, self.config), None

        if action == "add":
            self._require_list(key)
            self.edit_sessions.start(admin_id, add_target(key))
            return add_prompt(key), None

        # Everything else is navigation and leaves the admin idle
        self.edit_sessions.clear(admin_id)

        if action == "menu":
            return submenu(key, self.config), None

        if action == "toggle":
            if key not in FILTER_SWITCHES:
                raise ValidationError(f"unknown filter: {key}")
            if value not in ("true", "false"):
                raise ValidationError(f"invalid switch value: {value}")
            self.config.set_scalar(key, value)
            return filter_menu(self.config), "✅ Updated"

        if action == "list":
            self._require_list(key)
            return rule_list(key, self.config), None

        if action == "delete":
            self._require_list(key)
            removed = self.config.delete_rule(key, value)
            answer = "✅ Deleted" if removed else "Rule not found (already deleted?)"
            return rule_list(key, self.config), answer

        raise ValidationError(f"unknown config action: {action}")

    @staticmethod
    def _require_list(key: Optional[str]) -> None:
        if key not in RuleKind.ALL:
            raise ValidationError(f"unknown rule list: {key}")

    # -------------------------------------------------------------------------
    # Pending input
    # -------------------------------------------------------------------------

    async def consume_input(self, admin_id: str, message: Message) -> bool:
        """Apply an admin's message to their pending edit, if any.

        Returns:
            True if the message was consumed by an edit session.
        """
        edit = self.edit_sessions.get(admin_id)
        if edit is None:
            return False

        key = edit.key
        self.edit_sessions.clear(admin_id)
        chat_id = message.chat.id
        text = (message.text or "").strip()

        if text.lower() == CANCEL_COMMAND:
            await self._send_view(chat_id, main_menu(), notice="Edit cancelled.")
            return True

        try:
            notice, view = self._store_input(key, text)
        except ValidationError as e:
            logger.info(f"Admin {admin_id} input for {key} rejected: {e}")
            await self._send_view(
                chat_id, self._fallback_view(key), notice=f"❌ {html.escape(str(e))}"
            )
            return True

        logger.info(f"Admin {admin_id} updated {key}")
        await self._send_view(chat_id, view, notice=notice)
        return True

    def _store_input(self, key: str, text: str) -> tuple[str, MenuView]:
        if not text:
            raise ValidationError("please send the value as text")

        list_key = split_add_target(key)
        if list_key is not None:
            self._require_list(list_key)
            self.config.add_rule(list_key, text)
            return "✅ Rule added.", submenu(RULE_LIST_SUBMENU[list_key], self.config)

        if key not in SCALAR_SETTINGS:
            raise ValidationError(f"unknown setting: {key}")

        if key == "block_threshold":
            text = str(parse_threshold(text))
        self.config.set_scalar(key, text)
        label, parent = SCALAR_SETTINGS[key]
        return f"✅ {label} updated.", submenu(parent, self.config)

    def _fallback_view(self, key: str) -> MenuView:
        list_key = split_add_target(key)
        if list_key in RULE_LIST_SUBMENU:
            return submenu(RULE_LIST_SUBMENU[list_key], self.config)
        if key in SCALAR_SETTINGS:
            return submenu(SCALAR_SETTINGS[key][1], self.config)
        return main_menu()

    # -------------------------------------------------------------------------
    # Transport helpers
    # -------------------------------------------------------------------------

    async def _send_view(
        self, chat_id: int | str, view: MenuView, notice: Optional[str] = None
    ) -> None:
        text = f"{notice}\n\n{view.text}" if notice else view.text
        await self.transport.send_message(
            chat_id, text, parse_mode="HTML", reply_markup=view.keyboard
        )

    async def _answer(self, query_id: str, text: Optional[str], show_alert: bool) -> None:
        try:
            await self.transport.answer_callback_query(
                query_id, text=text, show_alert=show_alert
            )
        except TransportError as e:
            logger.warning(f"Could not answer callback {query_id}: {e.description}")
