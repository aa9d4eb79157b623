"""
Turkish-aware text normalization shared by the merchant resolver,
line item classifier and product matcher.

The same ``normalize_text`` is applied to both sides of every comparison
(query text and stored patterns / trigger tokens / catalog names), so the
pattern tables can be authored with or without diacritics.
"""

import re
import unicodedata
from typing import List

# Upper-case dotted/dotless I must be mapped before str.lower(), which
# would otherwise turn "I" into "i" and "İ" into "i" + combining dot.
_TURKISH_UPPER_TO_LOWER = str.maketrans({"I": "ı", "İ": "i"})

_TURKISH_FOLD = str.maketrans({
    "ç": "c", "Ç": "c",
    "ğ": "g", "Ğ": "g",
    "ı": "i", "I": "i", "İ": "i",
    "ö": "o", "Ö": "o",
    "ş": "s", "Ş": "s",
    "ü": "u", "Ü": "u",
})

# Units and packaging words that never identify a product (already folded)
UNIT_WORDS = frozenset({
    "adet", "ad", "kg", "gr", "g", "ml", "lt", "l", "cl",
    "paket", "pk", "kutu", "sise", "sisesi", "poset",
})

_NON_WORD = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")

# OCR letter/digit confusions, only applied inside numeric tokens
_NUMERIC_FIXES = str.maketrans({
    "O": "0", "o": "0",
    "I": "1", "l": "1",
    "B": "8",
    "S": "5",
    "Z": "2",
})
_NUMERIC_TOKEN = re.compile(r"[\dOoIlBSZ.,]*\d[\dOoIlBSZ.,]*")


def turkish_lower(text: str) -> str:
    """Lower-case text using Turkish casing rules for I/İ."""
    if not text:
        return ""
    return text.translate(_TURKISH_UPPER_TO_LOWER).lower()


def fold_diacritics(text: str) -> str:
    """Map Turkish letters to ASCII and drop any remaining combining marks."""
    if not text:
        return ""
    folded = text.translate(_TURKISH_FOLD)
    decomposed = unicodedata.normalize("NFKD", folded)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_text(text: str) -> str:
    """Case-fold, strip diacritics and punctuation, collapse whitespace.

    Args:
        text: Raw text (merchant line, item name, pattern...)

    Returns:
        Normalized matching key, possibly empty
    """
    if not text:
        return ""
    normalized = fold_diacritics(turkish_lower(text))
    normalized = _NON_WORD.sub(" ", normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


def tokenize(text: str) -> List[str]:
    """Split text into normalized tokens."""
    normalized = normalize_text(text)
    return normalized.split() if normalized else []


def content_tokens(text: str) -> List[str]:
    """Tokens that describe the product: no sizes, quantities or unit words."""
    return [
        token for token in tokenize(text)
        if token not in UNIT_WORDS and not any(ch.isdigit() for ch in token)
    ]


def normalize_numeric(text: str) -> str:
    """Fix common OCR digit confusions inside tokens that contain a digit.

    "1O,5O" becomes "10,50" while words such as "SOK" stay untouched.
    """
    if not text:
        return ""
    return _NUMERIC_TOKEN.sub(lambda m: m.group(0).translate(_NUMERIC_FIXES), text)
