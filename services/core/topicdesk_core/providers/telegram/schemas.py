"""Pydantic models for the subset of Bot API updates the relay consumes.

Unknown fields are ignored so newer Bot API payloads validate cleanly.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TelegramModel(BaseModel):
    """Base for all update models."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class User(TelegramModel):
    """A Telegram user or bot."""

    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None

    @property
    def full_name(self) -> str:
        name = self.first_name or ""
        if self.last_name:
            name = f"{name} {self.last_name}"
        return name

    @property
    def handle(self) -> Optional[str]:
        return f"@{self.username}" if self.username else None


class Chat(TelegramModel):
    """A chat (private, group, supergroup or channel)."""

    id: int
    type: str
    title: Optional[str] = None


class MessageEntity(TelegramModel):
    """A special entity in message text or caption."""

    type: str
    offset: int = 0
    length: int = 0
    url: Optional[str] = None


class FileRef(TelegramModel):
    """Any attachment addressed by ``file_id``."""

    file_id: str
    file_unique_id: Optional[str] = None


class PhotoSize(FileRef):
    """One resolution of a photo."""

    width: Optional[int] = None
    height: Optional[int] = None


class MessageOrigin(TelegramModel):
    """Origin of a forwarded message (Bot API 7.0+)."""

    type: str
    chat: Optional[Chat] = None


class Message(TelegramModel):
    """An inbound message."""

    message_id: int
    date: int
    chat: Chat
    from_user: Optional[User] = Field(default=None, alias="from")
    message_thread_id: Optional[int] = None
    is_topic_message: bool = False

    text: Optional[str] = None
    caption: Optional[str] = None
    entities: list[MessageEntity] = Field(default_factory=list)
    caption_entities: list[MessageEntity] = Field(default_factory=list)

    photo: list[PhotoSize] = Field(default_factory=list)
    video: Optional[FileRef] = None
    document: Optional[FileRef] = None
    audio: Optional[FileRef] = None
    voice: Optional[FileRef] = None
    sticker: Optional[FileRef] = None
    animation: Optional[FileRef] = None

    forward_from: Optional[User] = None
    forward_from_chat: Optional[Chat] = None
    forward_origin: Optional[MessageOrigin] = None

    @property
    def is_forwarded(self) -> bool:
        return bool(self.forward_from or self.forward_from_chat or self.forward_origin)

    @property
    def is_channel_forward(self) -> bool:
        if self.forward_from_chat is not None and self.forward_from_chat.type == "channel":
            return True
        return self.forward_origin is not None and self.forward_origin.type == "channel"

    @property
    def content_text(self) -> Optional[str]:
        """Text or caption, whichever the message carries."""
        return self.text if self.text is not None else self.caption


class CallbackQuery(TelegramModel):
    """An inline-keyboard button press."""

    id: str
    from_user: User = Field(alias="from")
    data: Optional[str] = None
    message: Optional[Message] = None


class Update(TelegramModel):
    """One webhook delivery."""

    update_id: int
    message: Optional[Message] = None
    edited_message: Optional[Message] = None
    callback_query: Optional[CallbackQuery] = None
