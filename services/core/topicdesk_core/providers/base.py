"""Base transport interface for the messaging platform.

The relay core talks to the platform only through ``BotTransport``.
Every method may raise ``TransportError``; callers treat that as
recoverable unless documented otherwise.

Usage:
    class TelegramBotClient(BotTransport):
        async def send_message(self, chat_id, text, ...) -> dict:
            ...
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional


class MediaKind(str, Enum):
    """Attachment kinds that can be re-sent by file reference."""

    PHOTO = "photo"
    DOCUMENT = "document"
    VIDEO = "video"
    AUDIO = "audio"
    VOICE = "voice"
    STICKER = "sticker"
    ANIMATION = "animation"


class BotTransport(ABC):
    """Outbound RPC surface of the messaging platform."""

    @abstractmethod
    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        thread_id: Optional[str] = None,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Send a text message, optionally into a forum thread."""
        ...

    @abstractmethod
    async def copy_message(
        self,
        chat_id: int | str,
        from_chat_id: int | str,
        message_id: int,
        thread_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Mirror an existing message into another chat or thread."""
        ...

    @abstractmethod
    async def create_forum_topic(self, chat_id: int | str, name: str) -> str:
        """Create a forum thread and return its thread id."""
        ...

    @abstractmethod
    async def edit_forum_topic(
        self, chat_id: int | str, thread_id: str, name: str
    ) -> None:
        """Rename a forum thread."""
        ...

    @abstractmethod
    async def pin_chat_message(
        self, chat_id: int | str, message_id: int, thread_id: Optional[str] = None
    ) -> None:
        """Pin a message without notifying members."""
        ...

    @abstractmethod
    async def edit_message_text(
        self,
        chat_id: int | str,
        message_id: int,
        text: str,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[dict[str, Any]] = None,
    ) -> None:
        """Replace the text (and optionally the keyboard) of a message."""
        ...

    @abstractmethod
    async def edit_message_reply_markup(
        self,
        chat_id: int | str,
        message_id: int,
        reply_markup: dict[str, Any],
    ) -> None:
        """Replace only the inline keyboard of a message."""
        ...

    @abstractmethod
    async def answer_callback_query(
        self,
        callback_query_id: str,
        text: Optional[str] = None,
        show_alert: bool = False,
    ) -> None:
        """Acknowledge a button press, optionally with a visible notice."""
        ...

    @abstractmethod
    async def send_media(
        self,
        kind: MediaKind,
        chat_id: int | str,
        file_id: str,
        caption: Optional[str] = None,
    ) -> dict[str, Any]:
        """Send an attachment by file reference."""
        ...
