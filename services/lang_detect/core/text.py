# services/lang_detect/core/text.py
from __future__ import annotations
import re
from typing import List, Tuple

# Arabic, Arabic Supplement, and the two presentation-form blocks
_ARABIC_RE = re.compile(r"[\u0600-\u06FF\u0750-\u077F\uFB50-\uFDFF\uFE70-\uFEFC]")
# Arabic harakat / tatweel; dropped before lexicon matching
_ARABIC_MARKS_RE = re.compile(r"[\u064B-\u065F\u0670\u0640]")
_FRENCH_DIACRITICS_RE = re.compile(r"[àáâäæçèéêëîïôœùûüÿ]", re.IGNORECASE)
# keep letters, digits (Arabizi uses 3/7/9), apostrophes and whitespace
_PUNCT_RE = re.compile(r"[^\w\s']+", re.UNICODE)
_SPACES_RE = re.compile(r"\s+")
_LATIN_LETTER_RE = re.compile(r"[a-zàâäçéèêëîïôœùûüÿ]", re.IGNORECASE)


def has_arabic(text: str) -> bool:
    return bool(_ARABIC_RE.search(text or ""))


def has_french_diacritics(text: str) -> bool:
    return bool(_FRENCH_DIACRITICS_RE.search(text or ""))


def script_counts(text: str) -> Tuple[int, int]:
    """(Arabic letters, Latin letters) in `text`; digits count as neither."""
    if not text:
        return 0, 0
    return len(_ARABIC_RE.findall(text)), len(_LATIN_LETTER_RE.findall(text))


def normalize(text: str) -> str:
    """Lowercase, drop punctuation and Arabic vowel marks, collapse spaces."""
    if not text:
        return ""
    s = text.casefold()
    s = s.replace("’", "'")
    s = _ARABIC_MARKS_RE.sub("", s)
    s = _PUNCT_RE.sub(" ", s)
    s = s.replace("_", " ")
    return _SPACES_RE.sub(" ", s).strip()


def tokenize(text: str) -> List[str]:
    s = normalize(text)
    if not s:
        return []
    return [t.strip("'") for t in s.split(" ") if t.strip("'")]
