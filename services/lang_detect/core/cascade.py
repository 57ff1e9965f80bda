# services/lang_detect/core/cascade.py
"""
Language identification cascade for short fr / ar / ar-ma customer messages.

States, in order:
  cache_lookup -> offline -> darija (conditional) -> cloud (conditional)
  -> select -> cache_write

Precedence when choosing the answer:
  Darija override > accepted cloud answer > offline answer.

Only InvalidInput escapes `detect`. Every other failure is absorbed, recorded
through telemetry and turned into a lower-confidence / fallback result.
"""
from __future__ import annotations
import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import replace
from typing import Any, Callable, List, Optional, Set, Tuple

from .cache import ResultCache, build_result_cache
from .cache_key import cache_key
from .cloud import CloudClassifier
from .config import CascadeConfig
from .darija import DarijaClassifier
from .offline import OfflineClassifier
from .telemetry import (
    EVENT_CACHE_HIT,
    EVENT_CACHE_MISS,
    EVENT_CLOUD_CALLED,
    EVENT_DARIJA_OVERRIDE,
    EVENT_FALLBACK,
    EVENT_RESULT,
    SPAN_DETECT,
    guard,
)
from .types import (
    LANG_AR,
    LANG_DARIJA,
    LANG_UNKNOWN,
    MODE_CLOUD,
    MODE_OFFLINE,
    REASON_ERROR,
    REASON_LOW_CONFIDENCE,
    REASON_TIMEOUT,
    CloudTimeout,
    DarijaSignal,
    DetectionRequest,
    DetectionResult,
    LangSignal,
)

logger = logging.getLogger("lang_detect.cascade")

# a cloud answer at or above this beats a weaker remote Darija flag;
# an "ar" answer beats it at any accepted confidence
CLOUD_VETO_CONF = 0.95


class LanguageCascade:
    """
    Orchestrates the tiers for one detection at a time; safe to share across
    threads (the cache is the only shared mutable state).
    """

    def __init__(
        self,
        config: Optional[CascadeConfig] = None,
        cache: Optional[ResultCache] = None,
        telemetry: Any = None,
        offline: Optional[OfflineClassifier] = None,
        darija: Optional[DarijaClassifier] = None,
        cloud: Optional[CloudClassifier] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.config = config or CascadeConfig()
        cfg = self.config
        self.cache = cache if cache is not None else build_result_cache(cfg)
        self.telemetry = guard(telemetry)
        self.offline = offline or OfflineClassifier()
        self.darija = darija or DarijaClassifier(
            ratio_threshold=cfg.darija_ratio_threshold,
            confidence_floor=cfg.darija_confidence_floor,
            confidence_ceiling=cfg.darija_confidence_ceiling,
        )
        self._owns_cloud = cloud is None and bool(cfg.cloud_url)
        if self._owns_cloud:
            cloud = CloudClassifier(cfg.cloud_url, token=cfg.cloud_token, timeout=cfg.cloud_timeout_ms / 1000.0)
        self.cloud = cloud
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max(2, cfg.cloud_workers), thread_name_prefix="lang-detect-cloud"
        )
        self._clock = clock

    # ------------------------------------------------------------------
    # public
    # ------------------------------------------------------------------
    def detect(
        self,
        text: str,
        force_offline: bool = False,
        timeout_ms: Optional[int] = None,
        max_accuracy: bool = False,
    ) -> DetectionResult:
        """
        Detect the language of `text`.

        Raises InvalidInput for empty / non-string text. Never raises for
        classifier, cache or telemetry failures.
        """
        request = DetectionRequest(
            text=text, force_offline=force_offline, timeout_ms=timeout_ms, max_accuracy=max_accuracy
        )
        return self._run(request)

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)
        if self._owns_cloud and self.cloud is not None:
            self.cloud.close()

    def __enter__(self) -> "LanguageCascade":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # state machine
    # ------------------------------------------------------------------
    def _elapsed_ms(self, start: float) -> float:
        return max(0.0, (self._clock() - start) * 1000.0)

    def _run(self, req: DetectionRequest) -> DetectionResult:
        cfg = self.config
        start = self._clock()
        budget_ms = req.timeout_ms or cfg.timeout_ms
        deadline = start + budget_ms / 1000.0
        states: List[str] = []

        span = self.telemetry.start_span(SPAN_DETECT)
        span.add_attribute("text_length", len(req.text))
        span.add_attribute("force_offline", req.force_offline)

        # cache_lookup
        states.append("cache_lookup")
        key = cache_key(req.text)
        cached = self.cache.get(key)
        if cached is not None:
            result = replace(cached, latency_ms=self._elapsed_ms(start))
            self.telemetry.record_event(EVENT_CACHE_HIT, {
                "key": key, "lang": result.lang, "confidence": result.confidence, "mode": result.mode,
            })
            span.end({"states": states, "cache_hit": True, "lang": result.lang, "mode": result.mode})
            return result
        self.telemetry.record_event(EVENT_CACHE_MISS, {"key": key})

        # offline
        states.append("offline")
        offline = self._offline_detect(req.text)
        chosen: Tuple[str, float, str] = (offline.lang, offline.confidence, MODE_OFFLINE)
        sufficient = offline.is_sufficient(cfg.sufficient_confidence)
        escalated = False
        reason: Optional[str] = None

        # darija
        override: Optional[DarijaSignal] = None
        if cfg.darija_sensitive or not sufficient:
            states.append("darija")
            signal = self._darija_check(req.text)
            if self._overrides(signal, sufficient):
                override = signal
                escalated = True
                chosen = (LANG_DARIJA, signal.confidence, MODE_OFFLINE)
                self.telemetry.record_event(EVENT_DARIJA_OVERRIDE, {
                    "offline_lang": offline.lang,
                    "offline_confidence": offline.confidence,
                    "confidence": signal.confidence,
                    "matched": list(signal.matched[:10]),
                    "signals": list(signal.signals[:10]),
                    "score": signal.score,
                })

        # cloud
        wants_cloud = req.max_accuracy or not sufficient
        if not req.force_offline and override is None and wants_cloud:
            if self.cloud is None or not self.cloud.enabled:
                logger.debug("[lang_detect] cloud tier not configured; keeping offline answer")
            else:
                states.append("cloud")
                escalated = True
                picked, reason = self._cloud_escalate(req.text, deadline)
                if picked is not None:
                    chosen = picked
                else:
                    self.telemetry.record_event(EVENT_FALLBACK, {
                        "reason": reason, "offline_lang": offline.lang, "offline_confidence": offline.confidence,
                    })
                    logger.info("[lang_detect] fallback to offline answer: %s", reason)

        # select
        states.append("select")
        lang, confidence, mode = chosen
        result = DetectionResult(
            lang=lang,
            confidence=confidence,
            mode=mode,
            source=mode,
            fallback=escalated,
            latency_ms=self._elapsed_ms(start),
        )

        # cache_write
        states.append("cache_write")
        ttl = cfg.degraded_ttl_seconds if reason in (REASON_TIMEOUT, REASON_ERROR) else cfg.cache_ttl_seconds
        self.cache.set(key, result, ttl)

        self.telemetry.record_event(EVENT_RESULT, {
            "lang": result.lang,
            "confidence": result.confidence,
            "mode": result.mode,
            "source": result.source,
            "latency": result.latency_ms,
            "fallback": result.fallback,
        })
        span.end({
            "states": states, "cache_hit": False, "lang": result.lang, "mode": result.mode,
            "fallback": result.fallback, "reason": reason,
        })
        return result

    # ------------------------------------------------------------------
    # tiers
    # ------------------------------------------------------------------
    def _offline_detect(self, text: str) -> LangSignal:
        try:
            return self.offline.classify(text)
        except Exception:
            logger.exception("[lang_detect] offline classifier failed; treating as no signal")
            return LangSignal(LANG_UNKNOWN, 0.0)

    def _darija_check(self, text: str) -> Optional[DarijaSignal]:
        try:
            return self.darija.classify(text)
        except Exception:
            logger.exception("[lang_detect] darija classifier failed; treating as no signal")
            return None

    def _overrides(self, signal: Optional[DarijaSignal], offline_sufficient: bool) -> bool:
        """
        A positive Darija signal replaces a weak or unknown offline answer. A
        sufficient fr/ar offline answer only yields to a strong lexicon score.
        """
        cfg = self.config
        if signal is None or not signal.is_darija or signal.confidence < cfg.darija_confidence_floor:
            return False
        if offline_sufficient and signal.score < cfg.darija_override_score:
            logger.debug(
                "[lang_detect] darija score %.2f below override bar %.2f; keeping offline answer",
                signal.score, cfg.darija_override_score,
            )
            return False
        return True

    def _cloud_escalate(self, text: str, deadline: float) -> Tuple[Optional[Tuple[str, float, str]], Optional[str]]:
        """
        Ask the general model and the Darija model in parallel, bounded by the
        cloud budget and the request deadline. Returns (choice, None) when a
        cloud answer is accepted, else (None, fallback_reason).
        """
        cfg = self.config
        remaining = deadline - self._clock()
        if remaining <= 0:
            return None, REASON_TIMEOUT
        budget = min(remaining, cfg.cloud_timeout_ms / 1000.0)

        self.telemetry.record_event(EVENT_CLOUD_CALLED, {"textLength": len(text), "budget_ms": round(budget * 1000.0, 1)})
        general = self._executor.submit(self.cloud.classify, text, budget)
        remote_darija = self._executor.submit(self.cloud.classify_darija, text, budget)
        done = self._await_answers(general, remote_darija, budget)
        for f in (general, remote_darija):
            if f not in done:
                # running calls cannot be interrupted; they end on their own socket timeout
                f.cancel()

        cloud_sig, cloud_reason = self._collect(general, done, "classify")
        darija_sig, _ = self._collect(remote_darija, done, "darija")

        darija_ok = (
            darija_sig is not None
            and darija_sig.is_darija
            and darija_sig.confidence >= cfg.darija_confidence_floor
        )
        cloud_ok = (
            cloud_sig is not None
            and cloud_sig.lang != LANG_UNKNOWN
            and cloud_sig.confidence >= cfg.cloud_accept_confidence
        )
        if darija_ok and (
            darija_sig.confidence >= cfg.cloud_accept_confidence
            or not cloud_ok
            or (cloud_sig.lang != LANG_AR and cloud_sig.confidence < CLOUD_VETO_CONF)
        ):
            return (LANG_DARIJA, darija_sig.confidence, MODE_CLOUD), None
        if cloud_ok:
            return (cloud_sig.lang, cloud_sig.confidence, MODE_CLOUD), None
        return None, cloud_reason or REASON_LOW_CONFIDENCE

    def _await_answers(self, general: Future, remote_darija: Future, budget: float) -> Set[Future]:
        """
        Wait up to `budget` seconds for both remote answers, returning early once
        the outcome is settled. A strong remote Darija answer settles it alone;
        an accepted general answer waits only `darija_grace_ms` for Darija.
        """
        cfg = self.config
        calls = [general, remote_darija]
        started = time.monotonic()
        done, _ = wait(calls, timeout=budget, return_when=FIRST_COMPLETED)
        if len(done) != 1:
            return done
        left = budget - (time.monotonic() - started)
        if remote_darija in done:
            sig = _peek(remote_darija)
            strong = max(cfg.darija_confidence_floor, cfg.cloud_accept_confidence)
            if sig is not None and sig.is_darija and sig.confidence >= strong:
                return done
        else:
            sig = _peek(general)
            if sig is not None and sig.lang != LANG_UNKNOWN and sig.confidence >= cfg.cloud_accept_confidence:
                left = min(left, cfg.darija_grace_ms / 1000.0)
        if left <= 0:
            return done
        done, _ = wait(calls, timeout=left)
        return done

    def _collect(self, future: Future, done: Any, name: str) -> Tuple[Any, Optional[str]]:
        if future not in done:
            logger.warning("[lang_detect] cloud %s timed out; abandoning call", name)
            return None, REASON_TIMEOUT
        try:
            return future.result(), None
        except CloudTimeout as e:
            logger.warning("[lang_detect] cloud %s timed out: %s", name, e)
            return None, REASON_TIMEOUT
        except Exception:
            logger.exception("[lang_detect] cloud %s failed; treating as no signal", name)
            return None, REASON_ERROR


def _peek(future: Future) -> Any:
    """Result of a finished future, or None if it raised (logged later by _collect)."""
    try:
        return future.result(timeout=0)
    except Exception:
        return None
