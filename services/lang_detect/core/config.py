# services/lang_detect/core/config.py
from __future__ import annotations
import os
import logging
from dataclasses import dataclass, replace

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("lang_detect")
if not logger.handlers:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _read_token(maybe_path: str) -> str:
    """Accept either a raw token or a path to a file containing it."""
    if not maybe_path:
        return ""
    maybe_path = maybe_path.strip()
    try:
        if os.path.isfile(maybe_path):
            with open(maybe_path, "r", encoding="utf-8") as fh:
                return fh.read().strip()
    except OSError:
        logger.exception("[lang_detect] failed to read cloud token from path=%s", maybe_path)
    return maybe_path


# -------------------------------------------------------------------
# Environment
# -------------------------------------------------------------------
TIMEOUT_MS = int(os.getenv("LANG_DETECT_TIMEOUT_MS", "400"))
CLOUD_TIMEOUT_MS = int(os.getenv("LANG_DETECT_CLOUD_TIMEOUT_MS", "400"))

SUFFICIENT_CONF = float(os.getenv("LANG_DETECT_SUFFICIENT_CONF", "0.85"))
CLOUD_ACCEPT_CONF = float(os.getenv("LANG_DETECT_CLOUD_ACCEPT_CONF", "0.85"))

DARIJA_RATIO = float(os.getenv("LANG_DETECT_DARIJA_RATIO", "0.3"))
DARIJA_CONF_FLOOR = float(os.getenv("LANG_DETECT_DARIJA_CONF_FLOOR", "0.7"))
DARIJA_CONF_CEIL = float(os.getenv("LANG_DETECT_DARIJA_CONF_CEIL", "0.98"))
DARIJA_SENSITIVE = _env_bool("LANG_DETECT_DARIJA_SENSITIVE", True)
# a confident fr/ar offline answer is only overridden at or above this Darija score
DARIJA_OVERRIDE_SCORE = float(os.getenv("LANG_DETECT_DARIJA_OVERRIDE_SCORE", "0.5"))

CACHE_BACKEND = os.getenv("LANG_DETECT_CACHE_BACKEND", "memory").strip().lower()
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
# TTL in seconds (default 1 day)
CACHE_TTL = int(os.getenv("LANG_DETECT_CACHE_TTL", str(24 * 3600)))
DEGRADED_TTL = int(os.getenv("LANG_DETECT_DEGRADED_TTL", "300"))
CACHE_OP_TIMEOUT = float(os.getenv("LANG_DETECT_CACHE_OP_TIMEOUT", "0.05"))
CACHE_MAX_ENTRIES = int(os.getenv("LANG_DETECT_CACHE_MAX_ENTRIES", "10000"))

CLOUD_URL = os.getenv("CLOUD_LANG_DETECT_URL", "").strip().rstrip("/")
CLOUD_TOKEN = _read_token(os.getenv("CLOUD_LANG_DETECT_TOKEN", ""))
CLOUD_WORKERS = int(os.getenv("LANG_DETECT_CLOUD_WORKERS", "8"))
# how long an accepted cloud answer waits for the slower Darija model
DARIJA_GRACE_MS = int(os.getenv("LANG_DETECT_DARIJA_GRACE_MS", "50"))


@dataclass(frozen=True)
class CascadeConfig:
    """Tunables for one cascade instance. Defaults come from the environment."""

    timeout_ms: int = TIMEOUT_MS
    cloud_timeout_ms: int = CLOUD_TIMEOUT_MS
    sufficient_confidence: float = SUFFICIENT_CONF
    cloud_accept_confidence: float = CLOUD_ACCEPT_CONF
    darija_ratio_threshold: float = DARIJA_RATIO
    darija_confidence_floor: float = DARIJA_CONF_FLOOR
    darija_confidence_ceiling: float = DARIJA_CONF_CEIL
    darija_sensitive: bool = DARIJA_SENSITIVE
    darija_override_score: float = DARIJA_OVERRIDE_SCORE
    cache_backend: str = CACHE_BACKEND
    redis_url: str = REDIS_URL
    cache_ttl_seconds: int = CACHE_TTL
    degraded_ttl_seconds: int = DEGRADED_TTL
    cache_op_timeout: float = CACHE_OP_TIMEOUT
    cache_max_entries: int = CACHE_MAX_ENTRIES
    cloud_url: str = CLOUD_URL
    cloud_token: str = CLOUD_TOKEN
    cloud_workers: int = CLOUD_WORKERS
    darija_grace_ms: int = DARIJA_GRACE_MS

    @classmethod
    def from_env(cls) -> "CascadeConfig":
        """Re-read the environment (module constants are captured at import)."""
        return cls(
            timeout_ms=int(os.getenv("LANG_DETECT_TIMEOUT_MS", str(TIMEOUT_MS))),
            cloud_timeout_ms=int(os.getenv("LANG_DETECT_CLOUD_TIMEOUT_MS", str(CLOUD_TIMEOUT_MS))),
            sufficient_confidence=float(os.getenv("LANG_DETECT_SUFFICIENT_CONF", str(SUFFICIENT_CONF))),
            cloud_accept_confidence=float(os.getenv("LANG_DETECT_CLOUD_ACCEPT_CONF", str(CLOUD_ACCEPT_CONF))),
            darija_ratio_threshold=float(os.getenv("LANG_DETECT_DARIJA_RATIO", str(DARIJA_RATIO))),
            darija_confidence_floor=float(os.getenv("LANG_DETECT_DARIJA_CONF_FLOOR", str(DARIJA_CONF_FLOOR))),
            darija_confidence_ceiling=float(os.getenv("LANG_DETECT_DARIJA_CONF_CEIL", str(DARIJA_CONF_CEIL))),
            darija_sensitive=_env_bool("LANG_DETECT_DARIJA_SENSITIVE", DARIJA_SENSITIVE),
            darija_override_score=float(os.getenv("LANG_DETECT_DARIJA_OVERRIDE_SCORE", str(DARIJA_OVERRIDE_SCORE))),
            cache_backend=os.getenv("LANG_DETECT_CACHE_BACKEND", CACHE_BACKEND).strip().lower(),
            redis_url=os.getenv("REDIS_URL", REDIS_URL),
            cache_ttl_seconds=int(os.getenv("LANG_DETECT_CACHE_TTL", str(CACHE_TTL))),
            degraded_ttl_seconds=int(os.getenv("LANG_DETECT_DEGRADED_TTL", str(DEGRADED_TTL))),
            cache_op_timeout=float(os.getenv("LANG_DETECT_CACHE_OP_TIMEOUT", str(CACHE_OP_TIMEOUT))),
            cache_max_entries=int(os.getenv("LANG_DETECT_CACHE_MAX_ENTRIES", str(CACHE_MAX_ENTRIES))),
            cloud_url=os.getenv("CLOUD_LANG_DETECT_URL", CLOUD_URL).strip().rstrip("/"),
            cloud_token=_read_token(os.getenv("CLOUD_LANG_DETECT_TOKEN", "")) or CLOUD_TOKEN,
            cloud_workers=int(os.getenv("LANG_DETECT_CLOUD_WORKERS", str(CLOUD_WORKERS))),
            darija_grace_ms=int(os.getenv("LANG_DETECT_DARIJA_GRACE_MS", str(DARIJA_GRACE_MS))),
        )

    def with_overrides(self, **kwargs) -> "CascadeConfig":
        return replace(self, **kwargs)
