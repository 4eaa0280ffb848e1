"""Workspace prefix generation for human-readable ticket identifiers."""
import re

_WORD_SEPARATOR = re.compile(r"[\s\-_]+")
_LETTER = re.compile(r"[A-Za-z]")
_NON_LETTERS = re.compile(r"[^A-Za-z]")
_VALID_PREFIX = re.compile(r"^[A-Z]{2,5}$")

DEFAULT_PREFIX = "PRJ"


def generate_prefix(name: str) -> str:
    """
    Derive a 2-3 letter uppercase prefix from a workspace name.

    Multi-word names use their initials ("Mobile Platform Team" → "MPT");
    single words use their leading letters ("Backend" → "BAC").

    Args:
        name: Workspace name

    Returns:
        Uppercase prefix, "PRJ" when the name has no letters at all
    """
    words = [word for word in _WORD_SEPARATOR.split(name) if _LETTER.search(word)]
    if len(words) >= 2:
        initials = "".join(_LETTER.search(word).group(0) for word in words).upper()[:3]
        if len(initials) >= 2:
            return initials

    letters = _NON_LETTERS.sub("", name).upper()
    if len(letters) >= 3:
        return letters[:3]
    if len(letters) == 2:
        return letters
    if len(letters) == 1:
        return f"{letters}X"
    return DEFAULT_PREFIX


def is_valid_prefix(prefix: str) -> bool:
    """Custom prefixes must be 2-5 uppercase ASCII letters."""
    return bool(_VALID_PREFIX.match(prefix))
