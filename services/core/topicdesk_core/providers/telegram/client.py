"""Telegram Bot API client.

Implements ``BotTransport`` over the HTTPS Bot API with ``httpx``.

Usage:
    client = TelegramBotClient(token="123:abc")
    thread_id = await client.create_forum_topic(group_id, "Alice | 42")
    await client.copy_message(group_id, 42, message_id=7, thread_id=thread_id)
"""

import logging
from typing import Any, Optional

import httpx

from topicdesk_core.domain.errors import TransportError
from topicdesk_core.providers.base import BotTransport, MediaKind

logger = logging.getLogger(__name__)


class TelegramAPIError(TransportError):
    """Raised when a Bot API call fails."""
    pass


class TelegramBotClient(BotTransport):
    """Bot API client.

    Each call opens a short-lived ``httpx.AsyncClient``; calls are
    fire-and-await with no retry of their own.
    """

    BASE_URL = "https://api.telegram.org"

    # Bot API method used to send each media kind, and its file field
    MEDIA_METHODS: dict[MediaKind, str] = {
        MediaKind.PHOTO: "sendPhoto",
        MediaKind.DOCUMENT: "sendDocument",
        MediaKind.VIDEO: "sendVideo",
        MediaKind.AUDIO: "sendAudio",
        MediaKind.VOICE: "sendVoice",
        MediaKind.STICKER: "sendSticker",
        MediaKind.ANIMATION: "sendAnimation",
    }

    def __init__(
        self,
        token: str,
        base_url: Optional[str] = None,
        timeout: float = 15.0,
    ):
        """Initialize the client.

        Args:
            token: Bot API token.
            base_url: Override for self-hosted Bot API servers.
            timeout: Per-request timeout in seconds.
        """
        self.token = token
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout

    def _method_url(self, method: str) -> str:
        return f"{self.base_url}/bot{self.token}/{method}"

    async def call(self, method: str, params: Optional[dict[str, Any]] = None) -> Any:
        """Invoke a Bot API method and return its ``result``.

        Raises:
            TelegramAPIError: On network failure, a non-JSON body, or
                an ``ok: false`` reply.
        """
        payload = {k: v for k, v in (params or {}).items() if v is not None}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self._method_url(method), json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Telegram API {method} transport failure: {e}")
            raise TelegramAPIError(
                f"network error: {e.__class__.__name__}", method=method
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            logger.error(
                f"Telegram API {method} returned non-JSON response "
                f"(status {response.status_code})"
            )
            raise TelegramAPIError(
                "non-JSON response", method=method, error_code=response.status_code
            ) from e

        if not isinstance(data, dict) or not data.get("ok"):
            description = "unknown error"
            error_code = response.status_code
            if isinstance(data, dict):
                description = data.get("description") or description
                error_code = data.get("error_code", error_code)
            logger.warning(f"Telegram API error ({method}): {description}")
            raise TelegramAPIError(description, method=method, error_code=error_code)

        return data.get("result")

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        thread_id: Optional[str] = None,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        return await self.call(
            "sendMessage",
            {
                "chat_id": chat_id,
                "text": text,
                "message_thread_id": thread_id,
                "parse_mode": parse_mode,
                "reply_markup": reply_markup,
            },
        )

    async def copy_message(
        self,
        chat_id: int | str,
        from_chat_id: int | str,
        message_id: int,
        thread_id: Optional[str] = None,
    ) -> dict[str, Any]:
        return await self.call(
            "copyMessage",
            {
                "chat_id": chat_id,
                "from_chat_id": from_chat_id,
                "message_id": message_id,
                "message_thread_id": thread_id,
            },
        )

    async def create_forum_topic(self, chat_id: int | str, name: str) -> str:
        result = await self.call("createForumTopic", {"chat_id": chat_id, "name": name})
        if not isinstance(result, dict) or "message_thread_id" not in result:
            raise TelegramAPIError(
                "response is missing message_thread_id", method="createForumTopic"
            )
        return str(result["message_thread_id"])

    async def edit_forum_topic(
        self, chat_id: int | str, thread_id: str, name: str
    ) -> None:
        await self.call(
            "editForumTopic",
            {"chat_id": chat_id, "message_thread_id": thread_id, "name": name},
        )

    async def pin_chat_message(
        self, chat_id: int | str, message_id: int, thread_id: Optional[str] = None
    ) -> None:
        await self.call(
            "pinChatMessage",
            {
                "chat_id": chat_id,
                "message_id": message_id,
                "message_thread_id": thread_id,
                "disable_notification": True,
            },
        )

    async def edit_message_text(
        self,
        chat_id: int | str,
        message_id: int,
        text: str,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[dict[str, Any]] = None,
    ) -> None:
        await self.call(
            "editMessageText",
            {
                "chat_id": chat_id,
                "message_id": message_id,
                "text": text,
                "parse_mode": parse_mode,
                "reply_markup": reply_markup,
            },
        )

    async def edit_message_reply_markup(
        self,
        chat_id: int | str,
        message_id: int,
        reply_markup: dict[str, Any],
    ) -> None:
        await self.call(
            "editMessageReplyMarkup",
            {"chat_id": chat_id, "message_id": message_id, "reply_markup": reply_markup},
        )

    async def answer_callback_query(
        self,
        callback_query_id: str,
        text: Optional[str] = None,
        show_alert: bool = False,
    ) -> None:
        await self.call(
            "answerCallbackQuery",
            {
                "callback_query_id": callback_query_id,
                "text": text,
                "show_alert": show_alert,
            },
        )

    async def send_media(
        self,
        kind: MediaKind,
        chat_id: int | str,
        file_id: str,
        caption: Optional[str] = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"chat_id": chat_id, kind.value: file_id}
        # Stickers take no caption
        if kind != MediaKind.STICKER:
            params["caption"] = caption or ""
        return await self.call(self.MEDIA_METHODS[kind], params)
