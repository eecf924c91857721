# keepform/processors/substitution.py
"""
Token-swap substitution.

Text is rewritten in two steps: observed -> same-length placeholder ->
desired. The placeholder keeps whitespace, control and direction-mark
characters at their original positions and fills every other position
with a private-use character that occurs in neither the observed nor the
desired text, so the underlying "replace first occurrence" primitive can
never match the wrong span.
"""

import logging
import unicodedata
from typing import Callable

logger = logging.getLogger(__name__)

# Basic Multilingual Plane private use area
PRIVATE_POOL_START = 0xE000
PRIVATE_POOL_END = 0xF8FF
# Supplementary private use area-A, used once the BMP pool is exhausted
FALLBACK_CHAR = "\U000F0000"

ReplaceFirst = Callable[[str, str], bool]


def is_preserved_char(ch: str) -> bool:
    """Whitespace, control and format (bidi mark) characters never move."""
    return ch.isspace() or unicodedata.category(ch) in ("Cc", "Cf")


def make_placeholder(observed: str, desired: str, context: str = "") -> str:
    """
    Build a placeholder with the same length as ``observed``.

    Args:
        observed: text currently stored
        desired: text that will replace it
        context: further text whose characters must not be used

    Returns:
        Placeholder string; every substituted position is disjoint from the
        characters of ``observed``, ``desired`` and ``context``
    """
    forbidden = set(observed) | set(desired) | set(context)
    pool = (
        chr(cp) for cp in range(PRIVATE_POOL_START, PRIVATE_POOL_END + 1)
        if chr(cp) not in forbidden
    )
    chars = []
    for ch in observed:
        if is_preserved_char(ch):
            chars.append(ch)
        else:
            chars.append(next(pool, FALLBACK_CHAR))
    return "".join(chars)


def swap_text(
    replace_first: ReplaceFirst,
    observed: str,
    desired: str,
    context: str = "",
) -> bool:
    """
    Replace ``observed`` with ``desired`` through a placeholder.

    Args:
        replace_first: storage primitive replacing the first occurrence of
            its first argument with its second, returning False on no match
        observed: text currently stored
        desired: replacement text
        context: surrounding text the placeholder must avoid

    Returns:
        True if both steps were committed
    """
    if observed == desired:
        return True

    token = make_placeholder(observed, desired, context)
    if not replace_first(observed, token):
        logger.debug("Observed text not found for swap: %r", observed)
        return False
    if not replace_first(token, desired):
        # Roll back to the observed text
        replace_first(token, observed)
        logger.warning("Placeholder vanished during swap, restored original text")
        return False
    return True
