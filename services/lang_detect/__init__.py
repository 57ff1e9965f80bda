"""
Language identification cascade (fr / ar / ar-ma) for short customer messages.

    from services.lang_detect import detect
    detect("labas 3lik khouya")
    # DetectionResult(lang='ar-ma', confidence=0.98, mode='offline', ...)

`detect` uses one process-wide cascade built from environment configuration.
Hosts that manage their own cache / telemetry build a LanguageCascade directly.
"""
from __future__ import annotations
import threading
from typing import Optional

from .core.cache import MemoryBackend, RedisBackend, ResultCache, build_result_cache
from .core.cache_key import cache_key
from .core.cascade import LanguageCascade
from .core.cloud import CloudClassifier
from .core.config import CascadeConfig
from .core.darija import DarijaClassifier
from .core.offline import OfflineClassifier
from .core.telemetry import LoggingTelemetry, NullTelemetry
from .core.types import (
    CacheUnavailable,
    ClassifierUnavailable,
    CloudTimeout,
    DetectionResult,
    InvalidInput,
    LangDetectError,
)

_default: Optional[LanguageCascade] = None
_default_lock = threading.Lock()


def get_default_cascade() -> LanguageCascade:
    global _default
    if _default is not None:
        return _default
    with _default_lock:
        if _default is None:
            _default = LanguageCascade(CascadeConfig.from_env())
        return _default


def reset_default_cascade() -> None:
    global _default
    with _default_lock:
        if _default is not None:
            _default.close()
        _default = None


def detect(
    text: str,
    force_offline: bool = False,
    timeout_ms: Optional[int] = None,
    max_accuracy: bool = False,
) -> DetectionResult:
    return get_default_cascade().detect(
        text, force_offline=force_offline, timeout_ms=timeout_ms, max_accuracy=max_accuracy
    )


__all__ = (
    "CacheUnavailable",
    "CascadeConfig",
    "ClassifierUnavailable",
    "CloudClassifier",
    "CloudTimeout",
    "DarijaClassifier",
    "DetectionResult",
    "InvalidInput",
    "LangDetectError",
    "LanguageCascade",
    "LoggingTelemetry",
    "MemoryBackend",
    "NullTelemetry",
    "OfflineClassifier",
    "RedisBackend",
    "ResultCache",
    "build_result_cache",
    "cache_key",
    "detect",
    "get_default_cascade",
    "reset_default_cascade",
)
