# services/lang_detect/core/darija.py
"""
Lexicon-based Darija (Moroccan Arabic) detector.

Works on Arabizi ("labas 3lik khouya"), Arabic-script Darija ("واش نتا مزيان")
and text mixing both scripts. The primary decision is the fraction of tokens
found in the lexicon. Three supplementary signals can lift a borderline ratio
once at least one lexicon token or idiom matched:

  - French/Darija code-switching ("ana je", "daba maintenant")
  - Darija verb morphology (negation ma...ch, present ka-/ta-, future gha-)
  - Latin/Arabic script mixing

Above the ratio threshold the text is flagged as Darija with a confidence
scaled between a floor and a ceiling.

`classify` returns None only when the detector itself fails. A negative
answer is a DarijaSignal(is_darija=False, ...), never None.
"""
from __future__ import annotations
import logging
import re
from typing import FrozenSet, Iterable, List, Optional, Tuple

from .text import normalize, script_counts, tokenize
from .types import DarijaSignal

logger = logging.getLogger("lang_detect.darija")

NEGATIVE_CONFIDENCE = 0.2

# Latin-script forms, including digit letters (3 = ع, 7 = ح, 9 = ق)
LATIN_LEXICON = frozenset({
    # greetings / politeness
    "salam", "slm", "labas", "lbas", "bikhir", "hamdullah", "hamdoulah", "lhamdulillah",
    "inchallah", "nchallah", "baraka", "llahi", "3afak", "afak", "chokran", "choukran",
    "bslama", "m3a", "mrhba", "marhba", "sbah", "msa",
    # pronouns / particles
    "ana", "nta", "nti", "ntouma", "huma", "homa", "hna", "dyal", "dial", "dyali", "dialk",
    "3lik", "3lih", "3liha", "3ndi", "3ndek", "3ndk", "3and", "lik", "lia", "liya",
    "bach", "ila", "walakin", "hit", "7it", "gha", "ghir", "rah", "raha", "kayn", "kayna",
    "makayn", "makaynch", "makach", "walu", "walou", "mashi", "machi", "ma3a",
    # question words ("fin" and "kif" are left out: both are everyday French)
    "wach", "ach", "achno", "chno", "chnou", "chnahuwa", "kifach", "kifash", "fein",
    "feen", "mnin", "fuqash", "fo9ach", "imta", "3lach", "3lash", "chhal", "ch7al",
    # verbs
    "bghit", "bgha", "bghina", "bghiti", "kan", "knt", "kunt", "kanu", "mcha", "mchit",
    "ja", "jat", "jit", "dar", "drt", "dert", "gal", "galt", "fhmt", "fhemt", "fhemti", "fhmti",
    "ma3reft", "3reft", "kan3ref", "nqdr", "n9der", "tqdr", "kandir", "katdir", "ghadi",
    "ghanmchi", "smhli", "smh", "sme7li", "smeetk", "smitek", "khdem", "khdma",
    # adjectives / adverbs / nouns
    "daba", "mzyan", "mezyan", "mzian", "zwin", "zwina", "bzaf", "bezaf", "chwiya", "chwia",
    "shwiya", "safi", "wakha", "wakhha", "yallah", "yak", "haka", "hakka", "khayb", "sahel",
    "flus", "flous", "drahem", "drham", "khoya", "khouya", "khti", "sahbi", "sa7bi", "lkhedma",
    "hadchi", "hadak", "hadik", "had", "dak", "dik", "tani", "bzzaf",
})

ARABIC_LEXICON = frozenset({
    "واش", "غادي", "ماشي", "فين", "دابا", "بزاف", "مزيان", "لاباس", "حيت", "علاش",
    "كيفاش", "شنو", "شحال", "بغيت", "ديال", "ديالي", "عافاك", "خويا", "صافي", "واخا",
    "كاين", "ماكاينش", "هادشي", "والو", "نتا", "نتي", "راه", "شوية", "زوين",
})

# multi-word idioms counted as a single matching token each
IDIOMS = frozenset({
    "wach labas", "la bas 3lik", "allah yhdik", "allah ysahel", "allah yster",
    "baraka allah fik", "chno akhbar", "kifash dayer", "kif dayr", "safi haka",
    "wakha haka", "makayn mushkil", "chwiya chwiya", "yallah bina", "allah ma3ak",
})

DEFAULT_LEXICON = LATIN_LEXICON | ARABIC_LEXICON

# French words directly next to Darija particles; applied to normalized text
CODE_SWITCH_PATTERNS = tuple(re.compile(p) for p in (
    r"\b(?:je|tu|il|elle|nous|vous|ils|elles) (?:rah|gha|dyal|dial)\b",
    r"\b(?:c'est|c'était|il y a) (?:zwina?|mzyan|mezyan|khayb)\b",
    r"\b(?:très|trop|assez) (?:zwina?|mzyan|mezyan|sahel)\b",
    r"\b(?:ana|nta|nti) (?:je|tu)\b",
    r"\b(?:bghit|bgha) (?:que|de|à)\b",
    r"\b(?:wakha|safi) (?:mais|donc|alors)\b",
    r"\b(?:daba|ghadi) (?:maintenant|après|demain)\b",
    r"\b(?:hier|aujourd'hui|demain) (?:kan|gha|rah)\b",
))

# matched against whole tokens
MORPHOLOGY_PATTERNS = tuple(re.compile(p) for p in (
    r"^ma\w{2,}(?:ch|sh)$",       # makaynch, mabghitch
    r"^ka[nt]\w{3,}$",            # kandir, katdir, kan3ref
    r"^gha[nt]\w{3,}$",           # ghanmchi, ghatdir
    r"^ما\w{2,}ش$",
    r"^(?:كن|كت|كي)\w{3,}$",
    r"^غا\w{3,}$",
))

# weight of each supplementary signal; every signal is in 0..1
CODE_SWITCH_WEIGHT = 0.15
MORPHOLOGY_WEIGHT = 0.1
SCRIPT_MIX_WEIGHT = 0.1
# minority-script share below which text does not count as mixed
SCRIPT_MIX_MIN = 0.2


def code_switching(normalized: str) -> Tuple[float, List[str]]:
    hits = [m.group(0) for p in CODE_SWITCH_PATTERNS for m in p.finditer(normalized)]
    # two pairs already make a strong pattern
    return min(len(hits) / 2.0, 1.0), hits


def morphology(tokens: List[str]) -> Tuple[float, List[str]]:
    if not tokens:
        return 0.0, []
    hits = [t for t in tokens if any(p.match(t) for p in MORPHOLOGY_PATTERNS)]
    return len(hits) / len(tokens), hits


def script_mixing(text: str) -> float:
    arabic, latin = script_counts(text)
    if not arabic or not latin:
        return 0.0
    share = min(arabic, latin) / (arabic + latin)
    return share if share > SCRIPT_MIX_MIN else 0.0


class DarijaClassifier:

    def __init__(
        self,
        lexicon: Optional[Iterable[str]] = None,
        idioms: Optional[Iterable[str]] = None,
        ratio_threshold: float = 0.3,
        confidence_floor: float = 0.7,
        confidence_ceiling: float = 0.98,
    ):
        self.lexicon: FrozenSet[str] = frozenset(lexicon) if lexicon is not None else DEFAULT_LEXICON
        self.idioms: Tuple[str, ...] = tuple(sorted(idioms if idioms is not None else IDIOMS, key=len, reverse=True))
        self.ratio_threshold = ratio_threshold
        self.confidence_floor = confidence_floor
        self.confidence_ceiling = confidence_ceiling

    def match_ratio(self, text: str) -> Tuple[float, List[str]]:
        """Return (fraction of matching tokens, matched tokens)."""
        s = normalize(text)
        if not s:
            return 0.0, []
        padded = f" {s} "
        idiom_hits: List[str] = []
        for idiom in self.idioms:
            needle = f" {idiom} "
            while needle in padded:
                idiom_hits.append(idiom)
                padded = padded.replace(needle, " ", 1)
        tokens = tokenize(padded)
        word_hits = [t for t in tokens if t in self.lexicon]
        # an idiom counts as one token on both sides of the ratio
        total = len(tokens) + len(idiom_hits)
        if total == 0:
            return 0.0, idiom_hits
        return (len(idiom_hits) + len(word_hits)) / total, idiom_hits + word_hits

    def score(self, text: str) -> Tuple[float, List[str], List[str]]:
        """
        Return (decision score, matched lexicon tokens, supplementary signals).

        The score is the lexicon ratio, raised by the weighted supplementary
        signals only when the lexicon matched something.
        """
        ratio, matched = self.match_ratio(text)
        if not matched:
            return ratio, matched, []
        normalized = normalize(text)
        cs, cs_hits = code_switching(normalized)
        morph, morph_hits = morphology(tokenize(normalized))
        mix = script_mixing(text)
        signals = [f"code_switch:{h}" for h in cs_hits] + [f"morphology:{h}" for h in morph_hits]
        if mix:
            signals.append(f"script_mix:{mix:.2f}")
        boosted = ratio + CODE_SWITCH_WEIGHT * cs + MORPHOLOGY_WEIGHT * morph + SCRIPT_MIX_WEIGHT * mix
        return min(boosted, 1.0), matched, signals

    def confidence_for(self, ratio: float) -> float:
        conf = self.confidence_floor + ratio * (1.0 - self.confidence_floor)
        return min(conf, self.confidence_ceiling)

    def classify(self, text: str) -> Optional[DarijaSignal]:
        try:
            score, matched, signals = self.score(text)
        except Exception:
            logger.exception("[lang_detect.darija] lexicon scoring failed")
            return None
        if score > self.ratio_threshold:
            return DarijaSignal(True, self.confidence_for(score), tuple(matched), score, tuple(signals))
        return DarijaSignal(False, NEGATIVE_CONFIDENCE, tuple(matched), score, tuple(signals))
