# services/model_service/app.py
"""
Stand-in for the remote language models the cloud tier talks to.

Serves the same contract a hosted model would:
  POST /classify -> {"lang": "fr|ar|unknown", "confidence": float}
  POST /darija   -> {"isDarija": bool, "confidence": float}

Run: uvicorn services.model_service.app:app --port 8100
"""
import os
import time
import logging

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from services.lang_detect.core.darija import DarijaClassifier
from services.lang_detect.core.offline import OfflineClassifier
from services.lang_detect.core.text import has_arabic, has_french_diacritics

logger = logging.getLogger("model_service")
if not logger.handlers:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

MODEL_SERVICE_LATENCY_MS = int(os.getenv("MODEL_SERVICE_LATENCY_MS", "0"))

ARABIC_CONFIDENCE = 0.98
FRENCH_CONFIDENCE = 0.97
UNKNOWN_CONFIDENCE = 0.5
NOT_DARIJA_CONFIDENCE = 0.5

app = FastAPI(title="lang-model-service")

_offline = OfflineClassifier()
# remote Darija model: plain ratio scaling, no floor/ceiling tuning from env
_darija = DarijaClassifier(ratio_threshold=0.3, confidence_floor=0.7, confidence_ceiling=0.98)


class PredictRequest(BaseModel):
    text: str


class ClassifyResponse(BaseModel):
    lang: str
    confidence: float


class DarijaResponse(BaseModel):
    isDarija: bool
    confidence: float


def _simulate_latency() -> None:
    if MODEL_SERVICE_LATENCY_MS > 0:
        time.sleep(MODEL_SERVICE_LATENCY_MS / 1000.0)


def _require_text(req: PredictRequest) -> str:
    text = (req.text or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="text required")
    return text


@app.get("/ping")
def ping():
    return {"status": "ok"}


@app.post("/classify", response_model=ClassifyResponse)
def classify(req: PredictRequest):
    text = _require_text(req)
    _simulate_latency()
    if has_arabic(text):
        return ClassifyResponse(lang="ar", confidence=ARABIC_CONFIDENCE)
    if has_french_diacritics(text) or _offline.classify(text).lang == "fr":
        return ClassifyResponse(lang="fr", confidence=FRENCH_CONFIDENCE)
    return ClassifyResponse(lang="unknown", confidence=UNKNOWN_CONFIDENCE)


@app.post("/darija", response_model=DarijaResponse)
def darija(req: PredictRequest):
    text = _require_text(req)
    _simulate_latency()
    sig = _darija.classify(text)
    if sig is not None and sig.is_darija:
        logger.info("[model_service] darija score=%.2f matched=%s", sig.score, list(sig.matched[:5]))
        return DarijaResponse(isDarija=True, confidence=sig.confidence)
    return DarijaResponse(isDarija=False, confidence=NOT_DARIJA_CONFIDENCE)
