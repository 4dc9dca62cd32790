import httpx
from typing import Any, Dict, Tuple, Optional

from dietbot.settings import settings


def push_http(payload: Dict[str, Any], timeout: float) -> Tuple[bool, int, Optional[str]]:
    """
    POST one outbound envelope to the transport adapter.
    Returns (success, status_code, error_message).
    """
    if not settings.PUSH_URL:
        return False, 0, "PUSH_URL is not set"

    headers = {"Content-Type": "application/json"}
    if settings.API_KEY:
        headers["x-api-key"] = settings.API_KEY

    try:
        with httpx.Client(timeout=timeout) as client:
            resp = client.post(settings.PUSH_URL, json=payload, headers=headers)

        if 200 <= resp.status_code < 300:
            return True, resp.status_code, None
        return False, resp.status_code, (resp.text or "")[:500]

    except httpx.TimeoutException:
        return False, 408, "Timeout"
    except httpx.RequestError as e:
        return False, 0, f"Network error: {e}"
