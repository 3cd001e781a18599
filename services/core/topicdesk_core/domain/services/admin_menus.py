"""Admin configuration menu views.

Each builder returns the text and inline keyboard for one screen. The
console decides whether a view edits an existing message or is sent as
a new one.
"""

import html
from dataclasses import dataclass
from typing import Any, Optional

from topicdesk_core.domain.callback_data import ConfigCallback, encode_callback
from topicdesk_core.domain.errors import ValidationError
from topicdesk_core.domain.services.gatekeeping import (
    CATEGORY_LABELS,
    CATEGORY_SWITCHES,
    CHANNEL_FORWARD_LABEL,
    CHANNEL_FORWARD_SWITCH,
    LINK_LABEL,
    LINK_SWITCH,
)
from topicdesk_core.domain.services.rules import (
    AUTO_REPLY_SEPARATOR,
    AutoReplyRule,
    ConfigRepository,
    RuleKind,
    keyword_token,
)

CANCEL_COMMAND = "/cancel"

SUBMENUS = ("base", "autoreply", "keyword", "filter")

# Scalar key -> (label, submenu it belongs to)
SCALAR_SETTINGS: dict[str, tuple[str, str]] = {
    "welcome_msg": ("Welcome message", "base"),
    "verif_q": ("Verification question", "base"),
    "verif_a": ("Verification answer", "base"),
    "block_threshold": ("Block threshold", "keyword"),
}

RULE_LIST_SUBMENU: dict[str, str] = {
    RuleKind.AUTO_REPLY: "autoreply",
    RuleKind.BLOCK_KEYWORD: "keyword",
}

FILTER_SWITCHES: dict[str, str] = {
    **{key: CATEGORY_LABELS[category] for category, key in CATEGORY_SWITCHES.items()},
    CHANNEL_FORWARD_SWITCH: CHANNEL_FORWARD_LABEL,
    LINK_SWITCH: LINK_LABEL,
}

PREVIEW_LENGTH = 40


@dataclass
class MenuView:
    text: str
    keyboard: dict[str, Any]


def _button(text: str, action: str, key: Optional[str] = None, value: Optional[str] = None) -> dict:
    return {
        "text": text,
        "callback_data": encode_callback(ConfigCallback(action, key, value)),
    }


def _back(submenu: Optional[str] = None) -> list[dict]:
    return [_button("⬅️ Back", "menu", submenu)]


def _preview(value: Optional[str]) -> str:
    value = value or ""
    if len(value) > PREVIEW_LENGTH:
        value = value[:PREVIEW_LENGTH] + "…"
    return html.escape(value)


def main_menu() -> MenuView:
    return MenuView(
        text="⚙️ <b>Bot configuration</b>\nChoose a section:",
        keyboard={
            "inline_keyboard": [
                [_button("📝 Basic settings", "menu", "base")],
                [_button("💬 Auto-replies", "menu", "autoreply")],
                [_button("🚫 Keyword blocking", "menu", "keyword")],
                [_button("🔍 Content filters", "menu", "filter")],
                [_button("🔄 Refresh", "menu")],
            ]
        },
    )


def base_menu(config: ConfigRepository) -> MenuView:
    lines = ["📝 <b>Basic settings</b>", ""]
    rows = []
    for key, (label, submenu) in SCALAR_SETTINGS.items():
        if submenu != "base":
            continue
        lines.append(f"• {label}: <code>{_preview(config.get_scalar(key))}</code>")
        rows.append([_button(f"✏️ {label}", "edit", key)])
    rows.append(_back())
    return MenuView(text="\n".join(lines), keyboard={"inline_keyboard": rows})


def autoreply_menu(config: ConfigRepository) -> MenuView:
    count = len(config.list_auto_replies())
    return MenuView(
        text=f"💬 <b>Auto-replies</b>\nActive rules: {count}",
        keyboard={
            "inline_keyboard": [
                [_button("➕ Add rule", "add", RuleKind.AUTO_REPLY)],
                [_button("📋 List rules", "list", RuleKind.AUTO_REPLY)],
                _back(),
            ]
        },
    )


def keyword_menu(config: ConfigRepository) -> MenuView:
    count = len(config.list_block_keywords())
    threshold = config.get_block_threshold()
    return MenuView(
        text=(
            "🚫 <b>Keyword blocking</b>\n"
            f"Active keywords: {count}\n"
            f"Block threshold: {threshold}"
        ),
        keyboard={
            "inline_keyboard": [
                [_button("➕ Add keyword", "add", RuleKind.BLOCK_KEYWORD)],
                [_button("📋 List keywords", "list", RuleKind.BLOCK_KEYWORD)],
                [_button("✏️ Block threshold", "edit", "block_threshold")],
                _back(),
            ]
        },
    )


def filter_menu(config: ConfigRepository) -> MenuView:
    rows = []
    for key, label in FILTER_SWITCHES.items():
        enabled = config.get_flag(key)
        status = "✅" if enabled else "❌"
        rows.append(
            [_button(f"{status} {label}", "toggle", key, "false" if enabled else "true")]
        )
    rows.append(_back())
    return MenuView(
        text="🔍 <b>Content filters</b>\nTap a type to allow or filter it.",
        keyboard={"inline_keyboard": rows},
    )


def submenu(name: Optional[str], config: ConfigRepository) -> MenuView:
    """Resolve ``config:menu[:name]`` to its view.

    Raises:
        ValidationError: For an unknown submenu.
    """
    if name is None:
        return main_menu()
    if name == "base":
        return base_menu(config)
    if name == "autoreply":
        return autoreply_menu(config)
    if name == "keyword":
        return keyword_menu(config)
    if name == "filter":
        return filter_menu(config)
    raise ValidationError(f"unknown menu: {name}")


def rule_list(kind: str, config: ConfigRepository) -> MenuView:
    """List a rule list with one delete button per entry."""
    rules = config.list_rules(kind)
    title = "💬 <b>Auto-replies</b>" if kind == RuleKind.AUTO_REPLY else "🚫 <b>Block keywords</b>"
    if not rules:
        return MenuView(
            text=f"{title}\nNo rules yet.",
            keyboard={"inline_keyboard": [_back(RULE_LIST_SUBMENU[kind])]},
        )

    lines = [title, ""]
    rows = []
    for index, rule in enumerate(rules, start=1):
        if isinstance(rule, AutoReplyRule):
            lines.append(
                f"{index}. <code>{_preview(rule.pattern)}</code> → {_preview(rule.reply)}"
            )
            rule_id = rule.id
        else:
            lines.append(f"{index}. <code>{_preview(rule)}</code>")
            rule_id = keyword_token(rule)
        rows.append([_button(f"🗑 Delete #{index}", "delete", kind, rule_id)])
    rows.append(_back(RULE_LIST_SUBMENU[kind]))
    return MenuView(text="\n".join(lines), keyboard={"inline_keyboard": rows})


def edit_prompt(key: str, config: ConfigRepository) -> MenuView:
    label, parent = SCALAR_SETTINGS[key]
    text = (
        f"✏️ <b>{label}</b>\n"
        f"Current value:\n<code>{html.escape(config.get_scalar(key) or '')}</code>\n\n"
        f"Send the new value, or {CANCEL_COMMAND} to abort."
    )
    if key == "block_threshold":
        text += "\nThe threshold must be a positive whole number."
    return MenuView(
        text=text,
        keyboard={"inline_keyboard": [[_button("✖️ Cancel", "menu", parent)]]},
    )


def add_prompt(kind: str) -> MenuView:
    if kind == RuleKind.AUTO_REPLY:
        text = (
            "➕ <b>New auto-reply</b>\n"
            f"Send <code>pattern{AUTO_REPLY_SEPARATOR}reply</code>, "
            f"for example <code>price|cost{AUTO_REPLY_SEPARATOR}See our price list.</code>"
        )
    else:
        text = (
            "➕ <b>New block keyword</b>\n"
            "Send a keyword or regular expression, for example <code>spam|scam</code>"
        )
    text += f"\n\nSend {CANCEL_COMMAND} to abort."
    return MenuView(
        text=text,
        keyboard={"inline_keyboard": [[_button("✖️ Cancel", "menu", RULE_LIST_SUBMENU[kind])]]},
    )
