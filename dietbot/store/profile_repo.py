import json
from typing import Any, Dict, Optional

from dietbot.store.redis_conn import get_redis
from dietbot.utils.time import format_follow_time

PREFIX = "user:"

def _key(user_id: str) -> str:
    return f"{PREFIX}{user_id}"


def get_profile(user_id: str) -> Optional[Dict[str, Any]]:
    r = get_redis()
    raw = r.get(_key(user_id))
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def store_profile(user_id: str, profile: Dict[str, Any]) -> None:
    r = get_redis()
    data = dict(profile)
    data["userId"] = user_id
    r.set(_key(user_id), json.dumps(data))


def record_follow(user_id: str) -> Dict[str, Any]:
    """
    Create the profile on first contact, stamping followTime.
    An existing profile is returned unchanged so re-follows cannot reset eligibility.
    """
    profile = get_profile(user_id)
    if profile is not None:
        return profile
    profile = {"userId": user_id, "followTime": format_follow_time()}
    r = get_redis()
    # NX: a concurrent follow for the same user keeps the first stamp
    if not r.set(_key(user_id), json.dumps(profile), nx=True):
        return get_profile(user_id) or profile
    return profile


def is_admin(profile: Optional[Dict[str, Any]]) -> bool:
    return bool(profile) and profile.get("isAdmin") is True
