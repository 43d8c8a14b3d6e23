"""Query text normalization before embedding and prompting.

Handles HTML remnants, control characters, punctuation variants, Unicode
composition, and whitespace. Case is preserved; the embedding model and the
generative model both benefit from the user's original casing.
"""
from __future__ import annotations

import logging
import re
import unicodedata

logger = logging.getLogger(__name__)

_HTML_TAG_RE = re.compile(r"</?[A-Za-z][^<>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_REPEATED_PUNCT_RE = re.compile(r"([!?.]){2,}")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace runs and trim."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_punctuation(text: str) -> str:
    """Normalize smart quotes, dashes, and repeated punctuation."""
    text = text.replace("“", '"').replace("”", '"')
    text = text.replace("‘", "'").replace("’", "'")
    text = text.replace("–", "-").replace("—", "-")
    return _REPEATED_PUNCT_RE.sub(r"\1", text)


def clean_html(text: str) -> str:
    """Remove HTML tags from text."""
    return _HTML_TAG_RE.sub(" ", text)


def remove_control_chars(text: str) -> str:
    return _CONTROL_RE.sub(" ", text)


def truncate(text: str, max_chars: int) -> str:
    """Cut at ``max_chars``, backing off to the last word boundary."""
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    space = cut.rfind(" ")
    if space > max_chars * 0.8:
        cut = cut[:space]
    logger.debug(f"Truncated query from {len(text)} to {len(cut)} chars")
    return cut


def normalize_query(text: str, *, max_chars: int | None = None, clean_html_tags: bool = True) -> str:
    """Normalize user-provided text for embedding and prompting.

    Args:
        text: Raw query text
        max_chars: Optional length cap applied after cleaning
        clean_html_tags: Remove HTML tags (pasted content, PDF artifacts)

    Returns:
        Normalized text, empty string if nothing meaningful remains
    """
    if not text or not text.strip():
        return ""

    if clean_html_tags:
        text = clean_html(text)
    text = unicodedata.normalize("NFC", text)
    text = remove_control_chars(text)
    text = normalize_punctuation(text)
    text = normalize_whitespace(text)

    if max_chars is not None:
        text = truncate(text, max_chars)
    return text
