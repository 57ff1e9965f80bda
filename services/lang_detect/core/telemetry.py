# services/lang_detect/core/telemetry.py
"""
Telemetry sink for the detection cascade.

Any object with `record_event(name, attributes)` and `start_span(name)` can be
injected. The cascade always wraps the sink in GuardedTelemetry, so a broken
sink is logged and ignored.
"""
from __future__ import annotations
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger("lang_detect.telemetry")

EVENT_CACHE_HIT = "lang.detect.cache.hit"
EVENT_CACHE_MISS = "lang.detect.cache.miss"
EVENT_DARIJA_OVERRIDE = "lang.detect.darija.override"
EVENT_CLOUD_CALLED = "lang.detect.cloud.called"
EVENT_FALLBACK = "lang.detect.fallback"
EVENT_RESULT = "lang.detect.result"
SPAN_DETECT = "lang.detect"


class Span(Protocol):
    def add_attribute(self, key: str, value: Any) -> None: ...

    def end(self, attributes: Optional[Dict[str, Any]] = None) -> None: ...


class TelemetrySink(Protocol):
    def record_event(self, name: str, attributes: Dict[str, Any]) -> None: ...

    def start_span(self, name: str) -> Span: ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class _LoggingSpan:
    def __init__(self, name: str, log: logging.Logger):
        self.name = name
        self._log = log
        self._start = time.perf_counter()
        self.attributes: Dict[str, Any] = {}

    def add_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def end(self, attributes: Optional[Dict[str, Any]] = None) -> None:
        if attributes:
            self.attributes.update(attributes)
        duration_ms = (time.perf_counter() - self._start) * 1000.0
        self._log.info("[telemetry] span %s duration_ms=%.2f %s", self.name, duration_ms, self.attributes)


class LoggingTelemetry:
    """Default sink: events and span ends go to the `lang_detect.telemetry` logger."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logger

    def record_event(self, name: str, attributes: Dict[str, Any]) -> None:
        attrs = dict(attributes)
        attrs.setdefault("timestamp", _now_iso())
        self._log.info("[telemetry] event %s %s", name, attrs)

    def start_span(self, name: str) -> _LoggingSpan:
        return _LoggingSpan(name, self._log)


class _NullSpan:
    def add_attribute(self, key: str, value: Any) -> None:
        pass

    def end(self, attributes: Optional[Dict[str, Any]] = None) -> None:
        pass


class NullTelemetry:
    def record_event(self, name: str, attributes: Dict[str, Any]) -> None:
        pass

    def start_span(self, name: str) -> _NullSpan:
        return _NullSpan()


class _GuardedSpan:
    def __init__(self, inner: Any):
        self._inner = inner

    def add_attribute(self, key: str, value: Any) -> None:
        try:
            self._inner.add_attribute(key, value)
        except Exception:
            logger.debug("[telemetry] span.add_attribute failed", exc_info=True)

    def end(self, attributes: Optional[Dict[str, Any]] = None) -> None:
        try:
            self._inner.end(attributes)
        except Exception:
            logger.debug("[telemetry] span.end failed", exc_info=True)


class GuardedTelemetry:
    """Wraps a sink so that it never raises into the caller."""

    def __init__(self, sink: Any):
        self._sink = sink

    @property
    def sink(self) -> Any:
        return self._sink

    def record_event(self, name: str, attributes: Dict[str, Any]) -> None:
        try:
            self._sink.record_event(name, attributes)
        except Exception:
            logger.debug("[telemetry] record_event %s failed", name, exc_info=True)

    def start_span(self, name: str) -> _GuardedSpan:
        try:
            inner = self._sink.start_span(name)
        except Exception:
            logger.debug("[telemetry] start_span %s failed", name, exc_info=True)
            inner = _NullSpan()
        return _GuardedSpan(inner)


def guard(sink: Any) -> GuardedTelemetry:
    if sink is None:
        sink = LoggingTelemetry()
    if isinstance(sink, GuardedTelemetry):
        return sink
    return GuardedTelemetry(sink)
