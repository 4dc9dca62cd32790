import json
import time
import inspect
from dietbot.core import states as st
from dietbot.store.redis_conn import get_redis
from dietbot.store.models import ConversationState
from dietbot.observability.logging import log

PREFIX = "conversation:"

def _key(user_id: str) -> str:
    return f"{PREFIX}{user_id}"


def _filter_session_kwargs(data: dict) -> dict:
    """
    Drop unknown fields so ConversationState(**kwargs) never explodes
    """
    sig = inspect.signature(ConversationState)
    allowed = set(sig.parameters.keys())
    return {k: v for k, v in data.items() if k in allowed}


def _sanitize_session_data(data: dict) -> dict:
    """
    Repair stored records that would otherwise route a user into a dead state.
    An unknown top-level state or a non-integer sub-state resets the user to idle.
    """
    repaired = False
    if not st.is_valid_state(data.get("topLevelState")):
        data["topLevelState"] = st.IDLE
        data["agent"] = None
        data["subState"] = 0
        repaired = True
    try:
        data["subState"] = int(data.get("subState") or 0)
    except (TypeError, ValueError):
        data["subState"] = 0
        data["agent"] = None
        repaired = True
    if not isinstance(data.get("scratch"), dict):
        data["scratch"] = {}

    if repaired:
        try:
            log(event="conversation_repaired", userId=data.get("userId") or "")
        except Exception:
            pass
    return data


def load_session(user_id: str) -> ConversationState:
    r = get_redis()
    raw = r.get(_key(user_id))
    if not raw:
        s = ConversationState(userId=user_id)
        s.lastUpdatedAtEpoch = int(time.time())
        return s

    data = json.loads(raw)
    data = _sanitize_session_data(data)
    data = _filter_session_kwargs(data)
    data["userId"] = user_id
    return ConversationState(**data)


def save_session(session: ConversationState) -> None:
    r = get_redis()
    session.lastUpdatedAtEpoch = int(time.time())
    r.set(_key(session.userId), json.dumps(session.__dict__))


def set_top_level_state(user_id: str, state: str) -> ConversationState:
    """Assign a top-level state, discarding any agent session in progress."""
    session = load_session(user_id)
    session.reset()
    session.topLevelState = state
    save_session(session)
    return session
