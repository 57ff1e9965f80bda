# services/lang_detect/core/cloud.py
"""
Client for the remote language models (general classifier + Darija model).

Endpoints, relative to the configured base URL:
  POST /classify {"text": ...} -> {"lang": "fr", "confidence": 0.97}
  POST /darija   {"text": ...} -> {"isDarija": true, "confidence": 0.91}

Both shapes are read leniently: `language`/`lang`, `confidence`/`score`, and
LLM-style bodies that wrap a JSON object inside generated text.

Failures raise: CloudTimeout when the request exceeds its budget,
ClassifierUnavailable for everything else. The caller decides what a failure
means.
"""
from __future__ import annotations
import json
import logging
import re
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter, Retry

from .types import (
    LANG_AR,
    LANG_FR,
    LANG_UNKNOWN,
    ClassifierUnavailable,
    CloudTimeout,
    DarijaSignal,
    LangSignal,
)

logger = logging.getLogger("lang_detect.cloud")

_JSON_BLOB_RE = re.compile(r"\{.*\}", re.DOTALL)
_FRENCH_LABELS = frozenset({"fr", "fra", "fre", "french", "francais", "français"})
_ARABIC_LABELS = frozenset({"ar", "ara", "arb", "arabic", "msa"})
_DARIJA_LABELS = frozenset({"ar-ma", "ary", "darija"})


def normalize_lang_code(raw: Optional[str]) -> str:
    """Map remote labels onto fr / ar / unknown."""
    s = (raw or "").strip().lower().replace("_", "-")
    if s.startswith("__label__"):
        s = s[len("__label__"):]
    if s in _FRENCH_LABELS or s.startswith("fr-"):
        return LANG_FR
    if s in _DARIJA_LABELS:
        # dialect labels are the Darija endpoint's business
        return LANG_UNKNOWN
    if s in _ARABIC_LABELS or s.startswith("ar-"):
        return LANG_AR
    return LANG_UNKNOWN


def _extract_generated_text(j: Any) -> Optional[str]:
    """Handle common text-generation response shapes."""
    if isinstance(j, str):
        return j.strip()
    if isinstance(j, dict):
        if isinstance(j.get("generated_text"), str):
            return j["generated_text"].strip()
        choices = j.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            c0 = choices[0]
            if isinstance(c0.get("text"), str):
                return c0["text"].strip()
            msg = c0.get("message")
            if isinstance(msg, dict) and isinstance(msg.get("content"), str):
                return msg["content"].strip()
    if isinstance(j, list) and j:
        first = j[0]
        if isinstance(first, dict) and isinstance(first.get("generated_text"), str):
            return first["generated_text"].strip()
        if isinstance(first, str):
            return first.strip()
    return None


def _unwrap(j: Any) -> Dict[str, Any]:
    """Return the payload dict, digging a JSON object out of generated text if needed."""
    if isinstance(j, dict) and any(k in j for k in ("lang", "language", "isDarija", "is_darija")):
        return j
    text_out = _extract_generated_text(j)
    if text_out:
        m = _JSON_BLOB_RE.search(text_out)
        if m:
            try:
                obj = json.loads(m.group(0))
                if isinstance(obj, dict):
                    return obj
            except ValueError:
                pass
    raise ClassifierUnavailable(f"unrecognized model response: {str(j)[:200]}")


def _confidence(payload: Dict[str, Any]) -> float:
    raw = payload.get("confidence", payload.get("score", 0.0))
    try:
        return max(0.0, min(1.0, float(raw or 0.0)))
    except (TypeError, ValueError):
        return 0.0


def _build_session(pool_size: int = 8) -> requests.Session:
    # one reconnect attempt; read timeouts are not retried
    retries = Retry(total=1, read=0, backoff_factor=0, allowed_methods=["POST"])
    adapter = HTTPAdapter(max_retries=retries, pool_maxsize=pool_size)
    session = requests.Session()
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class CloudClassifier:

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 0.4,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.token = token
        self.timeout = timeout
        self._session = session or _build_session()

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def _post(self, path: str, text: str, timeout: Optional[float]) -> Dict[str, Any]:
        if not self.enabled:
            raise ClassifierUnavailable("no cloud endpoint configured")
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        budget = self.timeout if timeout is None else timeout
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.post(url, headers=headers, json={"text": text}, timeout=budget)
        except requests.Timeout as e:
            raise CloudTimeout(f"{url} exceeded {budget:.3f}s") from e
        except requests.RequestException as e:
            raise ClassifierUnavailable(f"{url} request failed: {e}") from e

        if resp.status_code != 200:
            body = (resp.text or "")[:300]
            logger.warning("[lang_detect.cloud] %s returned %s: %s", url, resp.status_code, body)
            raise ClassifierUnavailable(f"{url} returned HTTP {resp.status_code}")
        try:
            j = resp.json()
        except ValueError:
            j = resp.text
        return _unwrap(j)

    def classify(self, text: str, timeout: Optional[float] = None) -> LangSignal:
        payload = self._post("/classify", text, timeout)
        lang = normalize_lang_code(payload.get("lang") or payload.get("language"))
        return LangSignal(lang, _confidence(payload))

    def classify_darija(self, text: str, timeout: Optional[float] = None) -> DarijaSignal:
        payload = self._post("/darija", text, timeout)
        flag = payload.get("isDarija", payload.get("is_darija"))
        if flag is None:
            # generic classifiers answer with a label instead of a flag
            label = str(payload.get("lang") or payload.get("language") or "").strip().lower()
            flag = label in ("ar-ma", "ar_ma", "ary", "darija")
        elif isinstance(flag, str):
            flag = flag.strip().lower() in ("true", "1", "yes")
        return DarijaSignal(bool(flag), _confidence(payload))

    def close(self) -> None:
        self._session.close()
