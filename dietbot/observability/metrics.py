"""
Dispatch & Campaign Metrics
---------------------------
Redis-backed counters and latency samples, summarized by get_metrics_snapshot()
for /admin/metrics. Missing keys (first boot) read as zero.
"""
from __future__ import annotations
import time
from typing import List, Tuple
from dietbot.store.redis_conn import get_redis

K_DISPATCH_OK = "metrics:dispatch:handled"        # INCR
K_DISPATCH_DROP = "metrics:dispatch:dropped"      # INCR
K_DISPATCH_FAIL = "metrics:dispatch:failed"       # INCR
K_DISPATCH_LAT = "metrics:dispatch:latencies"     # LPUSH ms

K_CLAIM_OK = "metrics:claims:granted"             # INCR
K_CLAIM_REJ = "metrics:claims:rejected"           # INCR
K_CODES_MINTED = "metrics:codes:minted"           # INCR

K_IMG_LAT = "metrics:image_fetch:latencies"       # LPUSH ms

_MAX_SAMPLES = 500

def _percentile(data: List[float], p: float) -> float:
    """Deterministic percentile (nearest-rank on sorted data)."""
    if not data:
        return 0.0
    d = sorted(data)
    k = max(1, int(round(p * len(d))))
    return float(d[k - 1])

def _incr(key: str) -> None:
    r = get_redis()
    r.incr(key, 1)

def _push_latency(key: str, ms: int) -> None:
    try:
        ms = int(ms)
    except (TypeError, ValueError):
        return
    r = get_redis()
    r.lpush(key, ms)
    r.ltrim(key, 0, _MAX_SAMPLES - 1)

def increment_dispatch_handled() -> None:
    _incr(K_DISPATCH_OK)

def increment_dispatch_dropped() -> None:
    _incr(K_DISPATCH_DROP)

def increment_dispatch_failed() -> None:
    _incr(K_DISPATCH_FAIL)

def record_dispatch_latency(ms: int) -> None:
    _push_latency(K_DISPATCH_LAT, ms)

def increment_claim_granted() -> None:
    _incr(K_CLAIM_OK)

def increment_claim_rejected() -> None:
    _incr(K_CLAIM_REJ)

def increment_codes_minted() -> None:
    _incr(K_CODES_MINTED)

def record_image_fetch_latency(ms: int) -> None:
    _push_latency(K_IMG_LAT, ms)

def _read_latency_list(key: str) -> List[float]:
    r = get_redis()
    out: List[float] = []
    for x in r.lrange(key, 0, _MAX_SAMPLES - 1) or []:
        try:
            out.append(float(x) / 1000.0)  # seconds
        except (TypeError, ValueError):
            continue
    return out

def _p50_p95(latencies_s: List[float]) -> Tuple[float, float]:
    if not latencies_s:
        return 0.0, 0.0
    return _percentile(latencies_s, 0.50), _percentile(latencies_s, 0.95)

def get_metrics_snapshot() -> dict:
    r = get_redis()
    p50_dispatch, p95_dispatch = _p50_p95(_read_latency_list(K_DISPATCH_LAT))
    p50_img, p95_img = _p50_p95(_read_latency_list(K_IMG_LAT))

    return {
        "dispatch_handled": int(r.get(K_DISPATCH_OK) or 0),
        "dispatch_dropped": int(r.get(K_DISPATCH_DROP) or 0),
        "dispatch_failed": int(r.get(K_DISPATCH_FAIL) or 0),
        "p50_dispatch_latency": round(p50_dispatch, 3),
        "p95_dispatch_latency": round(p95_dispatch, 3),
        "claims_granted": int(r.get(K_CLAIM_OK) or 0),
        "claims_rejected": int(r.get(K_CLAIM_REJ) or 0),
        "codes_minted": int(r.get(K_CODES_MINTED) or 0),
        "p50_image_fetch_latency": round(p50_img, 3),
        "p95_image_fetch_latency": round(p95_img, 3),
        "snapshot_at": int(time.time()),
    }
