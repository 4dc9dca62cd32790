"""
Image collaborator: fetch inbound image bytes and publish coupon images for viewing.

Coupon images are stored in the campaign keeper as URL-safe base64 without padding.
Publishing decodes one into COUPON_IMAGE_DIR, which the API serves under /coupons/.
"""
from __future__ import annotations
import base64
import hashlib
import os
import time
import uuid
from typing import Optional

import httpx

from dietbot.settings import settings
from dietbot.observability.logging import log
import dietbot.observability.metrics as metrics


class ImageFetchError(RuntimeError):
    pass


def fetch_budget_sec(timeout: Optional[float] = None) -> float:
    """
    Wall-clock budget for one image fetch.

    The fetch runs under the user's session lock, and a single blocked read can overrun
    the deadline by one phase timeout, so the budget is held to a third of the lock TTL.
    """
    timeout = float(timeout if timeout is not None else settings.IMAGE_FETCH_TIMEOUT_SEC)
    lock_sec = int(settings.SESSION_LOCK_TTL_MS) / 1000.0
    return max(0.1, min(timeout, lock_sec / 3))


def fetch_bytes(reference: str, timeout: Optional[float] = None) -> bytes:
    """
    Download the image behind `reference` (an http(s) URL from the transport adapter).
    Raises ImageFetchError on any failure. The body is streamed under an overall deadline
    and abandoned as soon as it passes IMAGE_MAX_BYTES.
    """
    if not reference or not str(reference).lower().startswith(("http://", "https://")):
        raise ImageFetchError(f"Unsupported image reference: {reference!r}")

    budget = fetch_budget_sec(timeout)
    max_bytes = int(settings.IMAGE_MAX_BYTES)
    start = time.monotonic()
    deadline = start + budget
    chunks = []
    size = 0
    try:
        with httpx.Client(timeout=budget, follow_redirects=True) as client:
            with client.stream("GET", reference) as resp:
                if resp.status_code != 200:
                    log(event="image_fetch_failed", statusCode=int(resp.status_code))
                    raise ImageFetchError(f"Image fetch returned {resp.status_code}")

                declared = resp.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > max_bytes:
                    raise ImageFetchError(f"Image too large: {declared} bytes")

                for chunk in resp.iter_bytes():
                    size += len(chunk)
                    if size > max_bytes:
                        raise ImageFetchError(f"Image too large: over {max_bytes} bytes")
                    if time.monotonic() > deadline:
                        raise ImageFetchError(f"Image fetch exceeded {budget:.1f}s")
                    chunks.append(chunk)
    except httpx.HTTPError as e:
        log(event="image_fetch_failed", errorType=type(e).__name__, error=str(e)[:300])
        raise ImageFetchError(str(e)) from e

    body = b"".join(chunks)
    if not body:
        raise ImageFetchError("Image fetch returned an empty body")

    elapsed_ms = int((time.monotonic() - start) * 1000)
    try:
        metrics.record_image_fetch_latency(elapsed_ms)
    except Exception:
        pass
    log(event="image_fetched", bytes=len(body), elapsedMs=elapsed_ms)
    return body


def encode_image(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def decode_image(encoded: str) -> bytes:
    padding = "=" * (-len(encoded) % 4)
    return base64.urlsafe_b64decode(encoded + padding)


def publish_for_viewing(user_id: str, encoded: str, fmt: str = "png") -> str:
    """
    Write the coupon image to the public directory and return its URL.

    Files are named after the image content, never the user, so every claim of one
    coupon image version shares a single file.
    """
    digest = hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:32]
    name = f"coupon-{digest}.{fmt}"
    os.makedirs(settings.COUPON_IMAGE_DIR, exist_ok=True)
    path = os.path.join(settings.COUPON_IMAGE_DIR, name)
    if not os.path.exists(path):
        tmp = f"{path}.{uuid.uuid4().hex}.tmp"
        with open(tmp, "wb") as fh:
            fh.write(decode_image(encoded))
        os.replace(tmp, path)
        log(event="coupon_image_published", userId=user_id, file=name)
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/coupons/{name}"
