"""Gatekeeping pipeline for inbound private messages.

Stages run strictly in order and the first one that fires decides the
outcome:

1. block check         silent drop for blocked users
2. verification        answer checking until the user is verified
3. keyword block       counts hits, auto-blocks at the threshold
4. content-type filter per-category and link switches
5. auto-reply          first matching rule answers instead of relaying

If no stage fires the message is forwarded to the user's relay thread.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from topicdesk_core.domain.models import UserSession, VerificationState
from topicdesk_core.domain.patterns import first_match
from topicdesk_core.domain.services.rules import ConfigRepository
from topicdesk_core.domain.services.sessions import SessionStore
from topicdesk_core.providers.telegram.schemas import Message

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT TYPES
# =============================================================================


class GateAction(str, Enum):
    """Outcome of the pipeline."""

    DROP = "drop"
    REPLY = "reply"
    FORWARD = "forward"


@dataclass(frozen=True)
class GateResult:
    """Pipeline decision; ``reply_text`` is sent back to the user if set."""

    action: GateAction
    stage: Optional[str] = None
    reply_text: Optional[str] = None

    @classmethod
    def forward(cls) -> "GateResult":
        return cls(action=GateAction.FORWARD)

    @classmethod
    def drop(cls, stage: str, reply_text: Optional[str] = None) -> "GateResult":
        return cls(action=GateAction.DROP, stage=stage, reply_text=reply_text)

    @classmethod
    def reply(cls, stage: str, reply_text: str) -> "GateResult":
        return cls(action=GateAction.REPLY, stage=stage, reply_text=reply_text)


class ContentCategory(str, Enum):
    """Primary content category, in precedence order."""

    FORWARDED = "forwarded"
    AUDIO_VOICE = "audio_voice"
    STICKER_ANIMATION = "sticker_animation"
    MEDIA = "media"
    PLAIN_TEXT = "plain_text"
    OTHER = "other"


# =============================================================================
# CONSTANTS
# =============================================================================


CATEGORY_SWITCHES: dict[ContentCategory, str] = {
    ContentCategory.FORWARDED: "enable_forward_forwarding",
    ContentCategory.AUDIO_VOICE: "enable_audio_forwarding",
    ContentCategory.STICKER_ANIMATION: "enable_sticker_forwarding",
    ContentCategory.MEDIA: "enable_image_forwarding",
    ContentCategory.PLAIN_TEXT: "enable_text_forwarding",
}
CHANNEL_FORWARD_SWITCH = "enable_channel_forwarding"
LINK_SWITCH = "enable_link_forwarding"

CATEGORY_LABELS: dict[ContentCategory, str] = {
    ContentCategory.FORWARDED: "forwarded messages (from users, groups or channels)",
    ContentCategory.AUDIO_VOICE: "audio or voice messages",
    ContentCategory.STICKER_ANIMATION: "stickers or GIFs",
    ContentCategory.MEDIA: "media (photos, videos, files)",
    ContentCategory.PLAIN_TEXT: "plain text messages",
}
CHANNEL_FORWARD_LABEL = "messages forwarded from channels"
LINK_LABEL = "content containing links"

LINK_ENTITY_TYPES = {"url", "text_link"}

AUTO_REPLY_PREFIX = "This is an automatic reply\n\n"

START_HINT = "Please send /start to begin."
VERIFICATION_PASSED = "✅ Verification passed! You can send messages now."
VERIFICATION_FAILED = (
    "❌ Verification failed!\n"
    "Please check the bot description for the answer and try again."
)


# =============================================================================
# CLASSIFICATION
# =============================================================================


def classify_content(message: Message) -> ContentCategory:
    """Pick exactly one primary category using fixed precedence."""
    if message.is_forwarded:
        return ContentCategory.FORWARDED
    if message.audio or message.voice:
        return ContentCategory.AUDIO_VOICE
    if message.sticker or message.animation:
        return ContentCategory.STICKER_ANIMATION
    if message.photo or message.video or message.document:
        return ContentCategory.MEDIA
    if message.text:
        return ContentCategory.PLAIN_TEXT
    return ContentCategory.OTHER


def has_link(message: Message) -> bool:
    entities = message.entities or message.caption_entities
    return any(entity.type in LINK_ENTITY_TYPES for entity in entities)


def filtered_notice(label: str) -> str:
    return (
        f"This message was filtered: {label}. "
        "Content of this type is not forwarded."
    )


def keyword_warning(count: int, threshold: int) -> str:
    return (
        f"⚠️ Your message matched a blocked keyword ({count}/{threshold}). "
        "It was discarded and will not be forwarded."
    )


def keyword_final_notice(count: int, threshold: int) -> str:
    return (
        f"❌ Your messages matched blocked keywords {count}/{threshold} times. "
        "You have been blocked automatically and the bot will no longer "
        "accept your messages."
    )


# =============================================================================
# PIPELINE
# =============================================================================


class GatekeepingPipeline:
    """Ordered, short-circuiting checks over one inbound private message."""

    def __init__(self, sessions: SessionStore, config: ConfigRepository):
        self.sessions = sessions
        self.config = config

    @property
    def stages(self) -> list[Callable[[Message, UserSession], Optional[GateResult]]]:
        return [
            self.check_blocked,
            self.check_verification,
            self.check_block_keywords,
            self.check_content_type,
            self.check_auto_reply,
        ]

    def evaluate(self, message: Message, session: UserSession) -> GateResult:
        for stage in self.stages:
            result = stage(message, session)
            if result is not None:
                return result
        return GateResult.forward()

    def start_verification(self, session: UserSession) -> list[str]:
        """Handle ``/start``: welcome text, plus the question if unverified."""
        replies = [self.config.get_scalar("welcome_msg") or ""]
        if session.state == VerificationState.VERIFIED:
            return replies
        replies.append(self.config.get_scalar("verif_q") or "")
        self.sessions.advance_state(session.user_id, VerificationState.PENDING)
        return replies

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def check_blocked(self, message: Message, session: UserSession) -> Optional[GateResult]:
        if session.is_blocked:
            return GateResult.drop("blocked")
        return None

    def check_verification(
        self, message: Message, session: UserSession
    ) -> Optional[GateResult]:
        if session.state == VerificationState.VERIFIED:
            return None
        if session.state == VerificationState.NEW:
            return GateResult.reply("verification", START_HINT)

        answer = (message.text or "").strip()
        expected = (self.config.get_scalar("verif_a") or "").strip()
        if answer and answer == expected:
            self.sessions.advance_state(session.user_id, VerificationState.VERIFIED)
            return GateResult.reply("verification", VERIFICATION_PASSED)
        return GateResult.reply("verification", VERIFICATION_FAILED)

    def check_block_keywords(
        self, message: Message, session: UserSession
    ) -> Optional[GateResult]:
        text = message.content_text
        if not text:
            return None

        keyword = first_match(
            text, self.config.list_block_keywords(), label="block keyword"
        )
        if keyword is None:
            return None

        count = self.sessions.increment_block_count(session.user_id)
        threshold = self.config.get_block_threshold()
        logger.info(
            f"User {session.user_id} matched block keyword {keyword!r} ({count}/{threshold})"
        )
        if count >= threshold:
            self.sessions.set_blocked(session.user_id, True)
            return GateResult.reply("keyword_block", keyword_final_notice(count, threshold))
        return GateResult.reply("keyword_block", keyword_warning(count, threshold))

    def check_content_type(
        self, message: Message, session: UserSession
    ) -> Optional[GateResult]:
        category = classify_content(message)

        switch = CATEGORY_SWITCHES.get(category)
        if switch and not self.config.get_flag(switch):
            return GateResult.drop("content_filter", filtered_notice(CATEGORY_LABELS[category]))

        if (
            category == ContentCategory.FORWARDED
            and message.is_channel_forward
            and not self.config.get_flag(CHANNEL_FORWARD_SWITCH)
        ):
            return GateResult.drop("content_filter", filtered_notice(CHANNEL_FORWARD_LABEL))

        if has_link(message) and not self.config.get_flag(LINK_SWITCH):
            return GateResult.drop("content_filter", filtered_notice(LINK_LABEL))

        return None

    def check_auto_reply(
        self, message: Message, session: UserSession
    ) -> Optional[GateResult]:
        text = message.content_text
        if not text:
            return None

        rule = first_match(
            text,
            self.config.list_auto_replies(),
            pattern_of=lambda r: r.pattern,
            label="auto-reply pattern",
        )
        if rule is None:
            return None
        return GateResult.drop("auto_reply", AUTO_REPLY_PREFIX + rule.reply)
