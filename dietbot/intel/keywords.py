# Keyword signals used to pick a top-level state for an idle user.
import re
from typing import Iterable, List, Optional

from dietbot.core import states as st

# Checked in order; the first set with a hit wins.
STATE_KEYWORDS = [
    (st.CLAIM_COUPON, {"code", "claim", "coupon", "coupons"}),
    (st.INVITE_FRIEND, {"invite", "share", "sharing", "promote"}),
    (st.MANAGE_CAMPAIGN, {"campaign", "admin"}),
    (st.RECOMMENDATION_REQUEST, {"recommendation", "recommendations", "recommend", "menu", "suggestion", "suggest"}),
    (st.INITIAL_INPUT, {"setting", "settings", "personal"}),
    (st.FEEDBACK, {"feedback", "report", "digest"}),
]

_NON_WORD = re.compile(r"[^\w']")


def get_tokens(text: str) -> List[str]:
    """Lowercase words with punctuation removed (apostrophes kept for "n't")."""
    out = []
    for word in (text or "").split():
        w = _NON_WORD.sub("", word).lower()
        if w:
            out.append(w)
    return out


def get_match(tokens: Iterable[str], keywords: Iterable[str]) -> Optional[str]:
    """First keyword found in the tokens, matching whole tokens or a token suffix."""
    tokens = list(tokens)
    for k in keywords:
        for t in tokens:
            if t == k or (k.startswith("n'") and t.endswith(k)):
                return k
    return None


def classify_state(text: str) -> Optional[str]:
    tokens = set(get_tokens(text))
    for state, words in STATE_KEYWORDS:
        if tokens & words:
            return state
    return None
