"""Telegram Bot API transport."""

from topicdesk_core.providers.telegram.client import TelegramAPIError, TelegramBotClient

__all__ = ["TelegramAPIError", "TelegramBotClient"]
