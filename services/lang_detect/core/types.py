"""
Detection value types and the error taxonomy.

Purpose:
- Carry the outcome of one cascade run back to the caller and into the cache
- Carry per-tier signals between the classifiers and the orchestrator
"""
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional, Tuple

LANG_FR = "fr"
LANG_AR = "ar"
LANG_DARIJA = "ar-ma"
LANG_UNKNOWN = "unknown"
SUPPORTED_LANGS = (LANG_FR, LANG_AR, LANG_DARIJA, LANG_UNKNOWN)

MODE_OFFLINE = "offline"
MODE_CLOUD = "cloud"
MODES = (MODE_OFFLINE, MODE_CLOUD)

REASON_TIMEOUT = "timeout"
REASON_LOW_CONFIDENCE = "low_confidence"
REASON_ERROR = "error"


class LangDetectError(Exception):
    """Base class for lang_detect failures."""


class InvalidInput(LangDetectError, ValueError):
    """Empty or non-text input. The only error surfaced to callers."""


class ClassifierUnavailable(LangDetectError):
    """A tier's dependency is down or misconfigured."""


class CloudTimeout(LangDetectError):
    """A remote tier exceeded its budget."""


class CacheUnavailable(LangDetectError):
    """The cache backing store could not be reached."""


def _clamp(conf: float) -> float:
    return max(0.0, min(1.0, float(conf)))


@dataclass(frozen=True)
class DetectionRequest:
    text: str
    force_offline: bool = False
    timeout_ms: Optional[int] = None
    max_accuracy: bool = False

    def __post_init__(self):
        if not isinstance(self.text, str):
            raise InvalidInput(f"text must be a string, got {type(self.text).__name__}")
        if not self.text.strip():
            raise InvalidInput("text must be non-empty after trimming")
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise InvalidInput("timeout_ms must be positive")


@dataclass(frozen=True)
class LangSignal:
    """Output of the offline and cloud tiers."""
    lang: str
    confidence: float

    def __post_init__(self):
        object.__setattr__(self, "confidence", _clamp(self.confidence))

    def is_sufficient(self, threshold: float) -> bool:
        return self.lang in (LANG_FR, LANG_AR) and self.confidence >= threshold


@dataclass(frozen=True)
class DarijaSignal:
    """
    Output of the Darija tier (local lexicon or remote model).

    `score` is the local detector's decision value (lexicon ratio plus
    supplementary signals); remote answers leave it at 0.0. `signals` names the
    supplementary indicators that fired (code-switching, morphology, script
    mixing).
    """
    is_darija: bool
    confidence: float
    matched: Tuple[str, ...] = field(default_factory=tuple)
    score: float = 0.0
    signals: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "confidence", _clamp(self.confidence))


@dataclass(frozen=True)
class DetectionResult:
    """
    Result returned by the cascade and stored in the cache.

    Attributes:
        lang: one of fr, ar, ar-ma, unknown
        confidence: 0.0 to 1.0, always populated (low for unknown)
        mode: tier that produced the answer (offline | cloud)
        source: reporting copy of mode
        fallback: True when the cascade escalated past the first tier
        latency_ms: wall-clock cost of producing this result
    """
    lang: str
    confidence: float
    mode: str
    source: str
    fallback: bool = False
    latency_ms: float = 0.0

    def __post_init__(self):
        if self.lang not in SUPPORTED_LANGS:
            raise ValueError(f"unsupported lang {self.lang!r}")
        if self.mode not in MODES or self.source not in MODES:
            raise ValueError(f"unsupported mode/source {self.mode!r}/{self.source!r}")
        object.__setattr__(self, "confidence", _clamp(self.confidence))

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["latencyMs"] = d.pop("latency_ms")
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectionResult":
        mode = data.get("mode", MODE_OFFLINE)
        return cls(
            lang=data["lang"],
            confidence=float(data["confidence"]),
            mode=mode,
            source=data.get("source", mode),
            fallback=bool(data.get("fallback", False)),
            latency_ms=float(data.get("latencyMs", data.get("latency_ms", 0.0))),
        )
