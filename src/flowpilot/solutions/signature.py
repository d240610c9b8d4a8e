"""Error signatures - Literal-stripped hashes used as solution cache keys."""

import hashlib
import re


# An opening quote never follows a word character, so contractions such
# as "can't" stay as text
QUOTED_LITERAL = re.compile(r"(?<!\w)'[^']*'|(?<!\w)\"[^\"]*\"|(?<!\w)`[^`]*`")
NUMBER = re.compile(r"\d+")
STRAY_QUOTES = re.compile(r"['\"`]")
WHITESPACE = re.compile(r"\s+")

KEYWORD_STOPWORDS = {"error", "failed", "unable", "cannot"}


def normalize_error(message: str) -> str:
    """Lowercase the message and strip quoted values and numbers.

    >>> normalize_error('Timeout 30000ms waiting for "#btn-12"')
    'timeout Nms waiting for Q'
    >>> normalize_error("Can't find element 'submit'")
    'cant find element Q'
    """
    normalized = message.lower()
    normalized = QUOTED_LITERAL.sub("Q", normalized)
    normalized = NUMBER.sub("N", normalized)
    normalized = STRAY_QUOTES.sub("", normalized)
    return WHITESPACE.sub(" ", normalized).strip()


def error_signature(message: str) -> str:
    """16 hex character signature of a normalized error message."""
    return hashlib.sha256(normalize_error(message).encode("utf-8")).hexdigest()[:16]


def extract_keywords(message: str, limit: int = 5) -> list[str]:
    """Meaningful words from an error message."""
    words = re.sub(r"[^\w\s]", " ", message.lower()).split()
    return [w for w in words if len(w) > 3 and w not in KEYWORD_STOPWORDS][:limit]
