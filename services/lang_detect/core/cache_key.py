# services/lang_detect/core/cache_key.py
from __future__ import annotations
import hashlib

KEY_PREFIX = "lang-detect:text:"
_DIGEST_CHARS = 32


def normalize_for_key(text: str) -> str:
    return (text or "").strip().casefold()


def cache_key(text: str) -> str:
    """
    Stable lookup key for a text: namespace prefix + sha256 of the trimmed,
    case-folded text. Distinct texts that normalize alike share a key.
    """
    digest = hashlib.sha256(normalize_for_key(text).encode("utf-8")).hexdigest()
    return KEY_PREFIX + digest[:_DIGEST_CHARS]
