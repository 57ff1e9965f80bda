"""
End-to-end runs of the detection cascade with a stubbed cloud tier.
"""
import time
from unittest.mock import MagicMock

import pytest

from services.lang_detect.core.cache import ResultCache
from services.lang_detect.core.cache_key import cache_key
from services.lang_detect.core.cascade import LanguageCascade
from services.lang_detect.core.offline import OfflineClassifier
from services.lang_detect.core.types import (
    CacheUnavailable,
    ClassifierUnavailable,
    CloudTimeout,
    DarijaSignal,
    InvalidInput,
    LangSignal,
)


class AdvancingOffline(OfflineClassifier):
    """Offline tier that burns `cost` seconds of a fake clock per call."""

    def __init__(self, clock, cost):
        super().__init__()
        self.clock = clock
        self.cost = cost
        self.calls = 0

    def classify(self, text):
        self.calls += 1
        self.clock.advance(self.cost)
        return super().classify(text)


class ExplodingSink:
    def record_event(self, name, attributes):
        raise RuntimeError("sink down")

    def start_span(self, name):
        raise RuntimeError("sink down")


@pytest.fixture
def make_cascade(config, memory_cache, telemetry, stub_cloud):
    built = []

    def _make(**kw):
        kw.setdefault("cache", memory_cache)
        kw.setdefault("telemetry", telemetry)
        kw.setdefault("cloud", stub_cloud)
        cascade = LanguageCascade(kw.pop("config", config), **kw)
        built.append(cascade)
        return cascade

    yield _make
    for c in built:
        c.close()


# sample messages seen on the support channel
SAMPLES = [
    ("bonjour, je voudrais parler à un conseiller", "fr"),
    ("Merci pour votre aide", "fr"),
    ("مرحبا، أريد التحدث مع مستشار", "ar"),
    ("السلام عليكم", "ar"),
    ("labas 3lik khouya", "ar-ma"),
    ("wach kayn chi promo daba", "ar-ma"),
    ("واش نتا مزيان", "ar-ma"),
]


class TestOfflinePath:
    @pytest.mark.parametrize("text,expected", SAMPLES)
    def test_samples(self, make_cascade, text, expected):
        result = make_cascade().detect(text)
        assert result.lang == expected
        assert result.mode == "offline"

    def test_french_stays_offline(self, make_cascade, stub_cloud, telemetry):
        result = make_cascade().detect("bonjour, je voudrais parler à un conseiller")
        assert result.lang == "fr"
        assert result.confidence >= 0.9
        assert result.source == "offline"
        assert result.fallback is False
        assert stub_cloud.calls == []
        assert "lang.detect.cloud.called" not in telemetry.names()

    def test_arabic_stays_offline(self, make_cascade, stub_cloud):
        result = make_cascade().detect("مرحبا، أريد التحدث مع مستشار")
        assert result.lang == "ar"
        assert result.confidence >= 0.9
        assert stub_cloud.calls == []

    def test_darija_override_skips_cloud(self, make_cascade, stub_cloud, telemetry):
        result = make_cascade().detect("labas 3lik khouya")
        assert result.lang == "ar-ma"
        assert result.confidence >= 0.7
        assert result.mode == "offline"
        assert result.fallback is True
        assert stub_cloud.calls == []
        override = telemetry.first("lang.detect.darija.override")
        assert override is not None
        assert override["offline_lang"] == "unknown"
        span = telemetry.spans[0]
        assert span.ended
        assert span.attributes["states"] == ["cache_lookup", "offline", "darija", "select", "cache_write"]

    def test_darija_check_skipped_when_not_sensitive(self, make_cascade, config, telemetry):
        cascade = make_cascade(config=config.with_overrides(darija_sensitive=False))
        cascade.detect("bonjour")
        assert "darija" not in telemetry.spans[0].attributes["states"]

    def test_force_offline_never_calls_cloud(self, make_cascade, stub_cloud):
        stub_cloud.general = LangSignal("fr", 0.99)
        result = make_cascade().detect("xyz123", force_offline=True)
        assert result.lang == "unknown"
        assert result.mode == "offline"
        assert stub_cloud.calls == []

    def test_cloud_not_configured(self, make_cascade, stub_cloud):
        stub_cloud.enabled = False
        result = make_cascade().detect("xyz123")
        assert result.lang == "unknown"
        assert result.fallback is False
        assert stub_cloud.calls == []


class TestCloudPath:
    def test_unknown_text_falls_back_low_confidence(self, make_cascade, stub_cloud, telemetry):
        result = make_cascade().detect("xyz123")
        assert result.lang == "unknown"
        assert result.confidence <= 0.5
        assert result.mode == "offline"
        assert result.fallback is True
        assert sorted(stub_cloud.calls) == ["classify", "darija"]
        assert telemetry.first("lang.detect.fallback")["reason"] == "low_confidence"

    def test_accepted_cloud_answer(self, make_cascade, stub_cloud, telemetry):
        stub_cloud.general = LangSignal("fr", 0.97)
        result = make_cascade().detect("hello there")
        assert result.lang == "fr"
        assert result.confidence == pytest.approx(0.97)
        assert result.mode == "cloud"
        assert result.source == "cloud"
        assert result.fallback is True
        assert "lang.detect.cloud.called" in telemetry.names()
        assert "lang.detect.fallback" not in telemetry.names()

    def test_low_cloud_confidence_is_rejected(self, make_cascade, stub_cloud):
        stub_cloud.general = LangSignal("fr", 0.6)
        result = make_cascade().detect("hello there")
        assert result.lang == "unknown"
        assert result.mode == "offline"

    def test_remote_darija_wins(self, make_cascade, stub_cloud):
        stub_cloud.darija = DarijaSignal(True, 0.9)
        result = make_cascade().detect("xyz123")
        assert result.lang == "ar-ma"
        assert result.confidence == pytest.approx(0.9)
        assert result.mode == "cloud"

    def test_confident_arabic_beats_weak_remote_darija(self, make_cascade, stub_cloud):
        stub_cloud.general = LangSignal("ar", 0.9)
        stub_cloud.darija = DarijaSignal(True, 0.75)
        result = make_cascade().detect("xyz123")
        assert result.lang == "ar"
        assert result.mode == "cloud"

    def test_weak_remote_darija_beats_hesitant_french(self, make_cascade, stub_cloud):
        stub_cloud.general = LangSignal("fr", 0.9)
        stub_cloud.darija = DarijaSignal(True, 0.75)
        assert make_cascade().detect("xyz123").lang == "ar-ma"

    def test_max_accuracy_consults_cloud_for_confident_offline(self, make_cascade, stub_cloud):
        stub_cloud.general = LangSignal("fr", 0.97)
        result = make_cascade().detect("bonjour, je voudrais parler à un conseiller", max_accuracy=True)
        assert "classify" in stub_cloud.calls
        assert result.lang == "fr"
        assert result.mode == "cloud"

    def test_cloud_error_degrades_with_short_ttl(self, make_cascade, stub_cloud, telemetry, memory_cache, clock):
        stub_cloud.general = ClassifierUnavailable("down")
        stub_cloud.darija = ClassifierUnavailable("down")
        result = make_cascade().detect("xyz123")
        assert result.lang == "unknown"
        assert result.fallback is True
        assert telemetry.first("lang.detect.fallback")["reason"] == "error"
        key = cache_key("xyz123")
        assert memory_cache.get(key) is not None
        clock.advance(301)
        assert memory_cache.get(key) is None

    def test_low_confidence_result_keeps_full_ttl(self, make_cascade, memory_cache, clock):
        make_cascade().detect("xyz123")
        clock.advance(301)
        assert memory_cache.get(cache_key("xyz123")) is not None

    def test_cloud_timeout_exception(self, make_cascade, stub_cloud, telemetry):
        stub_cloud.general = CloudTimeout("slow")
        result = make_cascade().detect("xyz123")
        assert result.lang == "unknown"
        assert telemetry.first("lang.detect.fallback")["reason"] == "timeout"

    def test_blocking_cloud_respects_deadline(self, make_cascade, stub_cloud, telemetry):
        stub_cloud.block = True
        cascade = make_cascade()
        t0 = time.perf_counter()
        result = cascade.detect("xyz123", timeout_ms=100)
        elapsed = time.perf_counter() - t0
        stub_cloud.release.set()
        assert elapsed < 1.0
        assert result.lang == "unknown"
        assert result.fallback is True
        assert telemetry.first("lang.detect.fallback")["reason"] == "timeout"

    def test_deadline_spent_before_cloud(self, make_cascade, stub_cloud, telemetry, clock):
        offline = AdvancingOffline(clock, cost=1.0)
        result = make_cascade(offline=offline, clock=clock).detect("xyz123", timeout_ms=200)
        assert stub_cloud.calls == []
        assert result.fallback is True
        assert telemetry.first("lang.detect.fallback")["reason"] == "timeout"

    def test_slow_darija_model_does_not_hold_accepted_answer(self, make_cascade, config, stub_cloud):
        stub_cloud.general = LangSignal("fr", 0.97)
        stub_cloud.block = {"darija"}
        cascade = make_cascade(config=config.with_overrides(timeout_ms=3000, cloud_timeout_ms=3000))
        t0 = time.perf_counter()
        result = cascade.detect("hello there")
        elapsed = time.perf_counter() - t0
        stub_cloud.release.set()
        assert elapsed < 1.0
        assert result.lang == "fr"
        assert result.mode == "cloud"

    def test_strong_remote_darija_does_not_wait_for_general(self, make_cascade, config, stub_cloud):
        stub_cloud.darija = DarijaSignal(True, 0.9)
        stub_cloud.block = {"classify"}
        cascade = make_cascade(config=config.with_overrides(timeout_ms=3000, cloud_timeout_ms=3000))
        t0 = time.perf_counter()
        result = cascade.detect("xyz123")
        elapsed = time.perf_counter() - t0
        stub_cloud.release.set()
        assert elapsed < 1.0
        assert result.lang == "ar-ma"
        assert result.mode == "cloud"


class TestDarijaPrecedence:
    @pytest.mark.parametrize("text", ["C'est la fin.", "Merci, à la fin du mois"])
    def test_french_with_fin_stays_french(self, make_cascade, text):
        result = make_cascade().detect(text)
        assert result.lang == "fr"
        assert result.mode == "offline"

    def test_bare_la_fin_is_not_darija(self, make_cascade):
        assert make_cascade().detect("la fin").lang != "ar-ma"

    def test_strong_darija_overrides_confident_french(self, make_cascade, telemetry):
        result = make_cascade().detect("merci bzaf khouya, safi")
        assert result.lang == "ar-ma"
        assert telemetry.first("lang.detect.darija.override")["offline_lang"] == "fr"

    def test_weak_darija_does_not_override_confident_french(self, make_cascade):
        darija = MagicMock()
        darija.classify.return_value = DarijaSignal(True, 0.8, ("daba",), score=0.4)
        result = make_cascade(darija=darija).detect("bonjour madame")
        assert result.lang == "fr"
        assert result.mode == "offline"

    def test_weak_darija_overrides_unknown(self, make_cascade, stub_cloud):
        darija = MagicMock()
        darija.classify.return_value = DarijaSignal(True, 0.8, ("daba",), score=0.4)
        result = make_cascade(darija=darija).detect("xyz123")
        assert result.lang == "ar-ma"
        assert stub_cloud.calls == []

    def test_override_bar_is_configurable(self, make_cascade, config):
        darija = MagicMock()
        darija.classify.return_value = DarijaSignal(True, 0.8, ("daba",), score=0.4)
        cascade = make_cascade(config=config.with_overrides(darija_override_score=0.3), darija=darija)
        assert cascade.detect("bonjour madame").lang == "ar-ma"

    @pytest.mark.parametrize("failure", [RuntimeError("lexicon missing"), None])
    def test_failed_darija_tier_moves_on_to_cloud(self, make_cascade, stub_cloud, failure):
        darija = MagicMock()
        if failure is None:
            darija.classify.return_value = None
        else:
            darija.classify.side_effect = failure
        stub_cloud.general = LangSignal("fr", 0.97)
        result = make_cascade(darija=darija).detect("xyz123")
        assert result.lang == "fr"
        assert result.mode == "cloud"
        assert "classify" in stub_cloud.calls



class TestCaching:
    def test_repeat_is_idempotent_and_faster(self, make_cascade, clock):
        offline = AdvancingOffline(clock, cost=0.005)
        cascade = make_cascade(offline=offline, clock=clock)
        first = cascade.detect("bonjour, je voudrais parler à un conseiller")
        second = cascade.detect("bonjour, je voudrais parler à un conseiller")
        assert (second.lang, second.confidence, second.mode, second.source) == (
            first.lang, first.confidence, first.mode, first.source,
        )
        assert first.latency_ms == pytest.approx(5.0)
        assert second.latency_ms < first.latency_ms
        assert offline.calls == 1

    def test_miss_writes_result(self, make_cascade, memory_cache, stub_cloud, telemetry):
        cascade = make_cascade()
        result = cascade.detect("xyz123")
        cached = memory_cache.get(cache_key("xyz123"))
        assert cached.lang == result.lang
        calls = len(stub_cloud.calls)
        cascade.detect("  XYZ123 ")
        assert len(stub_cloud.calls) == calls
        assert telemetry.first("lang.detect.cache.hit") is not None

    def test_override_result_is_cached(self, make_cascade, memory_cache):
        make_cascade().detect("labas 3lik khouya")
        assert memory_cache.get(cache_key("labas 3lik khouya")).lang == "ar-ma"

    def test_cache_outage_does_not_fail_detection(self, make_cascade):
        backend = MagicMock()
        backend.get.side_effect = CacheUnavailable("down")
        backend.set.side_effect = CacheUnavailable("down")
        result = make_cascade(cache=ResultCache(backend)).detect("bonjour")
        assert result.lang == "fr"


class TestErrors:
    @pytest.mark.parametrize("bad", ["", "   ", None, 123])
    def test_invalid_input(self, make_cascade, bad):
        with pytest.raises(InvalidInput):
            make_cascade().detect(bad)

    def test_invalid_input_is_value_error(self, make_cascade):
        with pytest.raises(ValueError):
            make_cascade().detect("\n\t")

    def test_non_positive_timeout(self, make_cascade):
        with pytest.raises(InvalidInput):
            make_cascade().detect("bonjour", timeout_ms=0)

    def test_broken_telemetry_is_ignored(self, make_cascade):
        result = make_cascade(telemetry=ExplodingSink()).detect("labas 3lik khouya")
        assert result.lang == "ar-ma"

    def test_broken_offline_tier_is_no_signal(self, make_cascade, stub_cloud):
        offline = MagicMock()
        offline.classify.side_effect = RuntimeError("model missing")
        stub_cloud.general = LangSignal("ar", 0.96)
        result = make_cascade(offline=offline).detect("xyz123")
        assert result.lang == "ar"
        assert result.mode == "cloud"
