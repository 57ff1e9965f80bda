"""Shared fixtures for the lang_detect test suite."""

import threading
from typing import Any, Dict, List, Optional

import pytest

from services.lang_detect.core.cache import MemoryBackend, ResultCache
from services.lang_detect.core.config import CascadeConfig
from services.lang_detect.core.types import DarijaSignal, LangSignal


class FakeClock:
    """Monotonic clock under test control (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSpan:
    def __init__(self, name: str):
        self.name = name
        self.attributes: Dict[str, Any] = {}
        self.ended = False

    def add_attribute(self, key, value):
        self.attributes[key] = value

    def end(self, attributes=None):
        self.ended = True
        if attributes:
            self.attributes.update(attributes)


class RecordingTelemetry:
    def __init__(self):
        self.events: List[tuple] = []
        self.spans: List[RecordingSpan] = []

    def record_event(self, name, attributes):
        self.events.append((name, dict(attributes)))

    def start_span(self, name):
        span = RecordingSpan(name)
        self.spans.append(span)
        return span

    def names(self) -> List[str]:
        return [n for n, _ in self.events]

    def first(self, name: str) -> Optional[Dict[str, Any]]:
        for n, attrs in self.events:
            if n == name:
                return attrs
        return None


class StubCloud:
    """
    Stands in for CloudClassifier. Each answer is a signal or an exception
    instance to raise. `block` is True (every call) or a set of call names
    ("classify", "darija") that wait on `release` before answering.
    """

    def __init__(self, general=None, darija=None, enabled: bool = True):
        self.general = general if general is not None else LangSignal("unknown", 0.5)
        self.darija = darija if darija is not None else DarijaSignal(False, 0.5)
        self.enabled = enabled
        self.release = threading.Event()
        self.block = False
        self.calls: List[str] = []

    def _answer(self, name, value):
        if self.block is True or (self.block and name in self.block):
            self.release.wait(5.0)
        if isinstance(value, Exception):
            raise value
        return value

    def classify(self, text, timeout=None):
        self.calls.append("classify")
        return self._answer("classify", self.general)

    def classify_darija(self, text, timeout=None):
        self.calls.append("darija")
        return self._answer("darija", self.darija)

    def close(self):
        self.release.set()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def telemetry():
    return RecordingTelemetry()


@pytest.fixture
def memory_cache(clock):
    return ResultCache(MemoryBackend(max_entries=100, timer=clock), default_ttl=3600)


@pytest.fixture
def config():
    return CascadeConfig(
        timeout_ms=400,
        cloud_timeout_ms=400,
        cache_backend="memory",
        cloud_url="",
        darija_sensitive=True,
    )


@pytest.fixture
def stub_cloud():
    cloud = StubCloud()
    yield cloud
    cloud.release.set()
