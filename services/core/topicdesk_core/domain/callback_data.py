"""Inline-button callback data codec.

Callback data is a colon-delimited token string. The first segment
selects the handler family:

    config:<action>[:<key>[:<value>]]   admin configuration menus
    block:<user_id>                     block the thread's user
    unblock:<user_id>                   unblock the thread's user
    pin_card:<user_id>                  pin the profile card

For ``config`` the value is always the last segment and is taken
verbatim, so rule identities that contain colons still round-trip.
"""

from dataclasses import dataclass
from typing import Optional, Union

from topicdesk_core.domain.errors import ValidationError

CONFIG_FAMILY = "config"

# action -> (min args, max args) after the action segment
CONFIG_ARITY: dict[str, tuple[int, int]] = {
    "menu": (0, 1),
    "edit": (1, 1),
    "toggle": (2, 2),
    "add": (1, 1),
    "list": (1, 1),
    "delete": (2, 2),
}

THREAD_ACTIONS = ("block", "unblock", "pin_card")


@dataclass(frozen=True)
class ConfigCallback:
    """A press on an admin configuration menu button."""

    action: str
    key: Optional[str] = None
    value: Optional[str] = None


@dataclass(frozen=True)
class ThreadCallback:
    """A press on a profile-card button inside a relay thread."""

    action: str
    user_id: str


Callback = Union[ConfigCallback, ThreadCallback]


def encode_callback(callback: Callback) -> str:
    """Serialize a callback to its wire string.

    Raises:
        ValidationError: If the callback has the wrong number of
            arguments for its action or a key contains a colon.
    """
    if isinstance(callback, ThreadCallback):
        if callback.action not in THREAD_ACTIONS:
            raise ValidationError(f"unknown thread action: {callback.action}")
        if not callback.user_id:
            raise ValidationError("thread callback requires a user id")
        return f"{callback.action}:{callback.user_id}"

    if callback.action not in CONFIG_ARITY:
        raise ValidationError(f"unknown config action: {callback.action}")

    args = [a for a in (callback.key, callback.value) if a is not None]
    if callback.key is None and callback.value is not None:
        raise ValidationError("config callback value given without a key")
    _check_arity(callback.action, len(args))
    if callback.key is not None and ":" in callback.key:
        raise ValidationError(f"config key must not contain ':': {callback.key}")

    return ":".join([CONFIG_FAMILY, callback.action, *args])


def decode_callback(data: str) -> Callback:
    """Parse a wire string produced by ``encode_callback``.

    Raises:
        ValidationError: If the family or action is unknown or the
            segment count does not fit the action.
    """
    if not data:
        raise ValidationError("empty callback data")

    family, _, rest = data.partition(":")

    if family in THREAD_ACTIONS:
        if not rest:
            raise ValidationError(f"{family} callback requires a user id")
        return ThreadCallback(action=family, user_id=rest)

    if family != CONFIG_FAMILY:
        raise ValidationError(f"unknown callback family: {family}")

    parts = rest.split(":", 2) if rest else []
    if not parts:
        raise ValidationError("config callback requires an action")

    action, args = parts[0], parts[1:]
    if action not in CONFIG_ARITY:
        raise ValidationError(f"unknown config action: {action}")
    _check_arity(action, len(args))

    return ConfigCallback(
        action=action,
        key=args[0] if len(args) > 0 else None,
        value=args[1] if len(args) > 1 else None,
    )


def _check_arity(action: str, count: int) -> None:
    low, high = CONFIG_ARITY[action]
    if not low <= count <= high:
        raise ValidationError(
            f"config:{action} takes {low}-{high} arguments, got {count}"
        )
