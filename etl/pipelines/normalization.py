"""Text and key normalization utilities.

Natural keys compare equal when their normalized forms are equal: NFC,
trimmed, case-folded and with internal whitespace collapsed.
"""
from __future__ import annotations

import re
import unicodedata

from ..errors import InvalidKeyError

_WHITESPACE = re.compile(r'\s+')
_TAG = re.compile(r'<[^>]+>')
_URL = re.compile(r'https?://\S+|www\.\S+')
_REPEATED_STOP = re.compile(r'([!?.]){2,}')
_SLUG_SEPARATORS = re.compile(r'[\W_]+')

_PUNCTUATION = str.maketrans({
    '“': '"', '”': '"',
    '‘': "'", '’': "'",
    '–': '-', '—': '-',
    '\u00a0': ' ',
})


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(' ', text).strip()


def normalize_punctuation(text: str) -> str:
    """Straighten quotes and dashes, squash repeated sentence stops."""
    return _REPEATED_STOP.sub(r'\1', text.translate(_PUNCTUATION))


def remove_urls(text: str) -> str:
    return _URL.sub('', text)


def clean_html(text: str) -> str:
    """Replace markup tags with a space so adjacent words stay apart."""
    return _TAG.sub(' ', text)


def normalize_key(value: str | None) -> str:
    """Normalize a natural-key component.

    Args:
        value: Raw name, title or identifier

    Returns:
        NFC, trimmed, case-folded, whitespace-collapsed key

    Raises:
        InvalidKeyError: If the value is missing or blank after normalization
    """
    if value is None:
        raise InvalidKeyError("natural key is missing", component="resolver")
    key = normalize_whitespace(unicodedata.normalize('NFC', str(value)).casefold())
    if not key:
        raise InvalidKeyError("natural key is blank", component="resolver")
    return key


def slugify(value: str | None) -> str:
    """Normalized key with runs of non-alphanumerics collapsed to ``-``.

    "Department of Education" -> "department-of-education"
    """
    slug = _SLUG_SEPARATORS.sub('-', normalize_key(value)).strip('-')
    if not slug:
        raise InvalidKeyError(f"natural key {value!r} has no alphanumeric content", component="resolver")
    return slug


def normalize_text(
    text: str,
    *,
    lowercase: bool = False,
    clean_urls: bool = False,
    clean_html_tags: bool = True,
) -> str:
    """Clean document or description text before analysis and embedding.

    Returns "" for blank input.
    """
    if not text or not text.strip():
        return ""
    if clean_html_tags:
        text = clean_html(text)
    if clean_urls:
        text = remove_urls(text)
    text = normalize_punctuation(unicodedata.normalize('NFC', text))
    return normalize_whitespace(text.lower() if lowercase else text)
