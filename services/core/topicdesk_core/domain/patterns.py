"""Admin-entered regex patterns, compiled on demand.

Stored rule patterns are plain strings. They are compiled at evaluation
time into a tagged result so that one bad pattern is skipped instead of
aborting the whole rule list.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CompiledPattern:
    """Either a usable matcher or the reason compilation failed."""

    source: str
    matcher: Optional[re.Pattern] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.matcher is not None

    def matches(self, text: str) -> bool:
        return self.matcher is not None and self.matcher.search(text) is not None


def compile_pattern(source: str) -> CompiledPattern:
    """Compile ``source`` case-insensitively."""
    if not source:
        return CompiledPattern(source=source, error="empty pattern")
    try:
        return CompiledPattern(source=source, matcher=re.compile(source, re.IGNORECASE))
    except re.error as e:
        return CompiledPattern(source=source, error=str(e))


def first_match(
    text: str,
    items: Iterable[T],
    pattern_of=lambda item: item,
    label: str = "pattern",
) -> Optional[T]:
    """Return the first item whose pattern matches ``text``.

    Items are evaluated in order; invalid patterns are logged and skipped.
    """
    for item in items:
        compiled = compile_pattern(pattern_of(item))
        if not compiled.ok:
            logger.warning(f"Skipping invalid {label} {compiled.source!r}: {compiled.error}")
            continue
        if compiled.matches(text):
            return item
    return None
