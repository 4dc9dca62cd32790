"""
Campaign Keeper
---------------
Durable campaign counters and mappings in Redis:

- claim counter (coupons already distributed)
- sharing code -> issuing user id
- coupon image (URL-safe base64 blob)
- campaign state (available coupons, start instant, coupon serial)

Every function is a single Redis round trip. Nothing here makes a read-then-write
pair atomic, except claim_unit() in "atomic" mode, which runs as a Lua script.
"""
from __future__ import annotations
from typing import Optional

from dietbot.settings import settings
from dietbot.store.models import CampaignState
from dietbot.store.redis_conn import get_redis

K_CLAIM_COUNT = "campaign:claim_count"
K_COUPON_IMAGE = "campaign:coupon_image"
K_AVAILABLE = "campaign:available_coupon"
K_START_MS = "campaign:start_ms"
K_SERIAL = "campaign:coupon_serial"
SHARING_PREFIX = "campaign:sharing:"

CLAIM_MODES = ("atomic", "racy")

# Take one unit only while the counter is below ARGV[1]; 1 if taken, else 0
CLAIM_UNIT_SCRIPT = """
local taken = tonumber(redis.call("get", KEYS[1]) or "0")
if taken >= tonumber(ARGV[1]) then
    return 0
end
redis.call("incr", KEYS[1])
return 1
"""

# Sharing codes are six decimal digits
MAX_COUPON_SERIAL = 999999


def _int(raw, default: int = 0) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _sharing_key(code: str) -> str:
    return f"{SHARING_PREFIX}{code}"


def format_sharing_code(serial: int) -> str:
    return f"{int(serial):06d}"


# -- claim counter ---------------------------------------------------------

def get_claim_count() -> int:
    r = get_redis()
    return _int(r.get(K_CLAIM_COUNT))

def increment_claim_count() -> int:
    r = get_redis()
    return int(r.incr(K_CLAIM_COUNT))

def reset_claim_count() -> None:
    r = get_redis()
    r.set(K_CLAIM_COUNT, 0)


def claim_unit(available: int, mode: Optional[str] = None) -> bool:
    """
    Take one coupon if fewer than `available` have been distributed.

    atomic: check and increment in one Lua script. The counter never passes
            `available`, even while open_campaign() resets it.
    racy:   GET, compare, INCR as separate round trips. Concurrent callers near
            the limit can all pass the check and over-issue.
    """
    mode = (mode or settings.CAMPAIGN_CLAIM_MODE or "atomic").lower()
    if mode not in CLAIM_MODES:
        raise ValueError(f"Unknown claim mode: {mode}")
    if available <= 0:
        return False

    if mode == "racy":
        if get_claim_count() >= available:
            return False
        increment_claim_count()
        return True

    r = get_redis()
    return int(r.eval(CLAIM_UNIT_SCRIPT, 1, K_CLAIM_COUNT, int(available))) == 1


# -- sharing codes ---------------------------------------------------------

def set_sharing_owner(code: str, user_id: str) -> None:
    r = get_redis()
    r.set(_sharing_key(code), user_id)

def get_sharing_owner(code: str) -> Optional[str]:
    r = get_redis()
    return r.get(_sharing_key(code)) or None

def next_coupon_serial() -> int:
    """Reserve the next serial to mint a sharing code from (0-based)."""
    r = get_redis()
    return int(r.incr(K_SERIAL)) - 1


# -- coupon image ----------------------------------------------------------

def get_coupon_image() -> Optional[str]:
    r = get_redis()
    return r.get(K_COUPON_IMAGE) or None

def set_coupon_image(encoded: str) -> None:
    r = get_redis()
    r.set(K_COUPON_IMAGE, encoded)


# -- campaign state --------------------------------------------------------

def load_campaign() -> CampaignState:
    r = get_redis()
    available, start_ms, serial, claimed = r.mget(K_AVAILABLE, K_START_MS, K_SERIAL, K_CLAIM_COUNT)
    return CampaignState(
        availableCoupon=_int(available),
        campaignStartInstant=_int(start_ms),
        currentCouponSerial=_int(serial),
        claimCount=_int(claimed),
    )

def set_available_coupon(count: int) -> None:
    r = get_redis()
    r.set(K_AVAILABLE, max(0, int(count)))

def close_campaign() -> None:
    set_available_coupon(0)

def open_campaign(count: int, start_ms: int) -> None:
    """Open with `count` coupons: stamp the start instant and reset the claim counter."""
    r = get_redis()
    r.mset({K_START_MS: int(start_ms), K_CLAIM_COUNT: 0, K_AVAILABLE: int(count)})
