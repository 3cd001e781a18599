"""Rule and config repository.

Scalar config resolves in three tiers: stored value, then environment
default, then hardcoded default. Rule lists (auto-replies and block
keywords) are stored as one JSON value per list and mutated with
read-modify-write over the whole value. Two admins editing the same
list at once can lose one writer's change (last writer wins).

Usage:
    repo = ConfigRepository(db=session, settings=settings)
    repo.set_scalar("verif_a", "42")
    rule_id = repo.add_rule(RuleKind.AUTO_REPLY, "hello|hi===Welcome!")
    for rule in repo.list_rules(RuleKind.AUTO_REPLY):
        ...
"""

import hashlib
import json
import logging
import uuid
from dataclasses import asdict, dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from topicdesk_core.config import Settings
from topicdesk_core.domain.errors import ValidationError
from topicdesk_core.domain.models import ConfigEntry
from topicdesk_core.domain.patterns import compile_pattern

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================


class RuleKind(str):
    """Stored rule-list keys."""

    AUTO_REPLY = "keyword_responses"
    BLOCK_KEYWORD = "block_keywords"

    ALL = (AUTO_REPLY, BLOCK_KEYWORD)


DEFAULT_VERIFICATION_QUESTION = (
    "Question: 1+1=?\n\n"
    "Hints:\n"
    "1. The correct answer is not \"2\".\n"
    "2. The answer is in the bot's description; please reply with it."
)

# Hardcoded defaults (third resolution tier)
CONFIG_DEFAULTS: dict[str, str] = {
    "welcome_msg": "Welcome! Please complete a quick verification before chatting.",
    "verif_q": DEFAULT_VERIFICATION_QUESTION,
    "verif_a": "3",
    "block_threshold": "5",
    RuleKind.AUTO_REPLY: "[]",
    RuleKind.BLOCK_KEYWORD: "[]",
    "enable_image_forwarding": "true",
    "enable_link_forwarding": "true",
    "enable_text_forwarding": "true",
    "enable_channel_forwarding": "true",
    "enable_forward_forwarding": "true",
    "enable_audio_forwarding": "true",
    "enable_sticker_forwarding": "true",
}

# Stored key -> Settings attribute holding its environment default
CONFIG_ENV_FIELDS: dict[str, str] = {
    "welcome_msg": "welcome_message",
    "verif_q": "verification_question",
    "verif_a": "verification_answer",
    "block_threshold": "block_threshold",
    RuleKind.AUTO_REPLY: "keyword_responses",
    RuleKind.BLOCK_KEYWORD: "block_keywords",
    "enable_image_forwarding": "enable_image_forwarding",
    "enable_link_forwarding": "enable_link_forwarding",
    "enable_text_forwarding": "enable_text_forwarding",
    "enable_channel_forwarding": "enable_channel_forwarding",
    "enable_forward_forwarding": "enable_forward_forwarding",
    "enable_audio_forwarding": "enable_audio_forwarding",
    "enable_sticker_forwarding": "enable_sticker_forwarding",
}

DEFAULT_BLOCK_THRESHOLD = 5

# Separator between pattern and reply in admin input and the legacy format
AUTO_REPLY_SEPARATOR = "==="

LEGACY_COMMENT_PREFIX = "//"

KEYWORD_TOKEN_LENGTH = 10


@dataclass
class AutoReplyRule:
    """A keyword auto-reply; ``pattern`` is a regex source string."""

    id: str
    pattern: str
    reply: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Optional["AutoReplyRule"]:
        # Older deployments stored {"keywords", "response"}
        pattern = data.get("pattern", data.get("keywords"))
        reply = data.get("reply", data.get("response"))
        rule_id = data.get("id")
        if not pattern or reply is None or rule_id is None:
            return None
        return cls(id=str(rule_id), pattern=str(pattern), reply=str(reply))


def new_rule_id() -> str:
    """Fresh unique identity for an auto-reply rule."""
    return uuid.uuid4().hex[:12]


def keyword_token(keyword: str) -> str:
    """Short stable token naming a block keyword in button data.

    Button data is capped at 64 bytes, so the pattern itself cannot be
    carried for long or non-ASCII keywords.
    """
    return hashlib.sha1(keyword.encode("utf-8")).hexdigest()[:KEYWORD_TOKEN_LENGTH]


# =============================================================================
# LEGACY FORMAT
# =============================================================================


def _legacy_lines(raw: str) -> list[str]:
    lines = []
    for line in raw.splitlines():
        line = line.strip()
        if not line or line.startswith(LEGACY_COMMENT_PREFIX):
            continue
        lines.append(line)
    return lines


def parse_legacy_auto_replies(raw: str) -> list[AutoReplyRule]:
    """Parse ``pattern===reply`` lines; invalid lines are skipped."""
    rules = []
    for line in _legacy_lines(raw or ""):
        parts = line.split(AUTO_REPLY_SEPARATOR)
        if len(parts) != 2:
            continue
        pattern, reply = parts[0].strip(), parts[1].strip()
        if not pattern or not reply:
            continue
        compiled = compile_pattern(pattern)
        if not compiled.ok:
            logger.warning(f"Dropping invalid legacy auto-reply pattern {pattern!r}: {compiled.error}")
            continue
        rules.append(AutoReplyRule(id=new_rule_id(), pattern=pattern, reply=reply))
    return rules


def parse_legacy_block_keywords(raw: str) -> list[str]:
    """Parse one pattern per line; invalid patterns are skipped."""
    keywords: list[str] = []
    for line in _legacy_lines(raw or ""):
        compiled = compile_pattern(line)
        if not compiled.ok:
            logger.warning(f"Dropping invalid legacy block keyword {line!r}: {compiled.error}")
            continue
        if line not in keywords:
            keywords.append(line)
    return keywords


def parse_auto_reply_input(text: str) -> tuple[str, str]:
    """Split admin input ``pattern===reply``.

    Raises:
        ValidationError: If the separator is missing or either side is empty.
    """
    parts = (text or "").split(AUTO_REPLY_SEPARATOR)
    if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
        raise ValidationError(
            f"expected the format pattern{AUTO_REPLY_SEPARATOR}reply"
        )
    return parts[0].strip(), parts[1].strip()


# =============================================================================
# REPOSITORY
# =============================================================================


class ConfigRepository:
    """Scalar config and rule-list storage."""

    def __init__(self, db: Session, settings: Settings):
        """Initialize the repository.

        Args:
            db: SQLAlchemy database session.
            settings: Application settings providing environment defaults.
        """
        self.db = db
        self.settings = settings

    # -------------------------------------------------------------------------
    # Scalars
    # -------------------------------------------------------------------------

    def get_scalar(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Resolve ``key``: stored value, environment default, hardcoded default."""
        entry = self.db.get(ConfigEntry, key)
        if entry is not None:
            return entry.value

        env_field = CONFIG_ENV_FIELDS.get(key)
        if env_field:
            env_value = getattr(self.settings, env_field, None)
            if env_value is not None:
                return env_value

        if default is not None:
            return default
        return CONFIG_DEFAULTS.get(key)

    def set_scalar(self, key: str, value: str) -> None:
        entry = self.db.get(ConfigEntry, key)
        if entry is None:
            self.db.add(ConfigEntry(key=key, value=value))
        else:
            entry.value = value
        self.db.commit()

    def get_flag(self, key: str) -> bool:
        """Resolve a boolean switch stored as ``"true"``/``"false"``."""
        return (self.get_scalar(key) or "").strip().lower() == "true"

    def get_block_threshold(self) -> int:
        raw = self.get_scalar("block_threshold") or ""
        try:
            value = int(raw.strip())
        except ValueError:
            return DEFAULT_BLOCK_THRESHOLD
        return value if value > 0 else DEFAULT_BLOCK_THRESHOLD

    # -------------------------------------------------------------------------
    # Rule lists
    # -------------------------------------------------------------------------

    def list_rules(self, kind: str) -> list:
        """Return a rule list in insertion order.

        If the stored value is not a JSON list, it is read as the legacy
        line format; a successful legacy parse is converted and persisted
        once. Anything unreadable is treated as an empty list.
        """
        if kind not in RuleKind.ALL:
            raise ValidationError(f"unknown rule list: {kind}")

        raw = self.get_scalar(kind) or "[]"
        try:
            data = json.loads(raw)
        except ValueError:
            data = None

        if isinstance(data, list):
            return self._structured(kind, data)

        if kind == RuleKind.AUTO_REPLY:
            legacy: list = parse_legacy_auto_replies(raw)
        else:
            legacy = parse_legacy_block_keywords(raw)

        if not legacy:
            logger.warning(f"Unreadable {kind} value; treating as empty")
            return []

        logger.warning(f"Converting legacy {kind} format ({len(legacy)} entries)")
        self._save(kind, legacy)
        return legacy

    def list_auto_replies(self) -> list[AutoReplyRule]:
        return self.list_rules(RuleKind.AUTO_REPLY)

    def list_block_keywords(self) -> list[str]:
        return self.list_rules(RuleKind.BLOCK_KEYWORD)

    def add_rule(self, kind: str, payload: str) -> str:
        """Append a rule and return its identity.

        For auto-replies ``payload`` is ``pattern===reply`` and the
        identity is a fresh token (duplicate patterns are allowed). For
        block keywords the payload is the pattern and is its own identity.

        Raises:
            ValidationError: On malformed input or a duplicate keyword.
        """
        rules = self.list_rules(kind)

        if kind == RuleKind.AUTO_REPLY:
            pattern, reply = parse_auto_reply_input(payload)
            rule = AutoReplyRule(id=new_rule_id(), pattern=pattern, reply=reply)
            rules.append(rule)
            self._save(kind, rules)
            return rule.id

        keyword = (payload or "").strip()
        if not keyword:
            raise ValidationError("block keyword must not be empty")
        if keyword in rules:
            raise ValidationError(f"block keyword already exists: {keyword}")
        rules.append(keyword)
        self._save(kind, rules)
        return keyword

    def delete_rule(self, kind: str, rule_id: str) -> bool:
        """Remove a rule by identity.

        Block keywords are matched by their ``keyword_token`` or, failing
        that, by the pattern itself.

        Returns:
            True if a rule was removed.
        """
        rules = self.list_rules(kind)
        if kind == RuleKind.AUTO_REPLY:
            remaining = [r for r in rules if r.id != str(rule_id)]
        else:
            target = next((k for k in rules if keyword_token(k) == rule_id), rule_id)
            remaining = [k for k in rules if k != target]

        if len(remaining) == len(rules):
            return False
        self._save(kind, remaining)
        return True

    def _structured(self, kind: str, data: list) -> list:
        if kind == RuleKind.AUTO_REPLY:
            rules = []
            for item in data:
                rule = AutoReplyRule.from_dict(item) if isinstance(item, dict) else None
                if rule is None:
                    logger.warning(f"Skipping malformed auto-reply entry: {item!r}")
                    continue
                rules.append(rule)
            return rules
        return [str(item) for item in data if isinstance(item, str) and item]

    def _save(self, kind: str, rules: list) -> None:
        if kind == RuleKind.AUTO_REPLY:
            value = json.dumps([asdict(r) for r in rules], ensure_ascii=False)
        else:
            value = json.dumps(list(rules), ensure_ascii=False)
        self.set_scalar(kind, value)
