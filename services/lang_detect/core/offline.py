# services/lang_detect/core/offline.py
from __future__ import annotations
import logging
from typing import FrozenSet, Iterable, Optional

from .text import has_arabic, has_french_diacritics
from .types import LANG_AR, LANG_FR, LANG_UNKNOWN, LangSignal

logger = logging.getLogger("lang_detect.offline")

ARABIC_CONFIDENCE = 0.92
FRENCH_CONFIDENCE = 0.9
UNKNOWN_CONFIDENCE = 0.1

# Matched as case-insensitive substrings, so keep entries long enough not to
# fire inside Arabizi tokens ("la", "de", "je" would).
FRENCH_MARKERS = frozenset({
    "bonjour", "bonsoir", "merci", "parler", "conseiller", "voudrais",
    "j'aimerais", "s'il vous", "est-ce que", "pourquoi", "combien",
    "aujourd'hui", "rendez-vous", "vous", "nous", "votre", "avec",
    "je suis", "c'est", "il y a", "commande", "livraison", "madame", "monsieur",
})


class OfflineClassifier:
    """
    Local script/lexicon heuristic: Arabic block -> ar, French diacritics or
    function words -> fr, else unknown. Never returns ar-ma.
    """

    def __init__(self, french_markers: Optional[Iterable[str]] = None):
        markers = french_markers if french_markers is not None else FRENCH_MARKERS
        self.french_markers: FrozenSet[str] = frozenset(m.casefold() for m in markers)

    def classify(self, text: str) -> LangSignal:
        t = (text or "").strip()
        if not t:
            return LangSignal(LANG_UNKNOWN, 0.0)
        if has_arabic(t):
            return LangSignal(LANG_AR, ARABIC_CONFIDENCE)
        if has_french_diacritics(t) or self._has_french_marker(t):
            return LangSignal(LANG_FR, FRENCH_CONFIDENCE)
        return LangSignal(LANG_UNKNOWN, UNKNOWN_CONFIDENCE)

    def _has_french_marker(self, text: str) -> bool:
        low = text.casefold().replace("’", "'")
        return any(m in low for m in self.french_markers)
