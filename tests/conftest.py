import threading
from typing import Dict, List
from unittest.mock import patch

import pytest

from dietbot.api.schemas import InboundMessage
from dietbot.core.campaign import CampaignManager
from dietbot.core.dispatcher import Dispatcher
from dietbot.intel.keywords import classify_state
from dietbot.outbound.formatter import OutboundMessage
from dietbot.outbound.publisher import Publisher
from dietbot.settings import settings
from dietbot.store.campaign_keeper import CLAIM_UNIT_SCRIPT
from dietbot.utils.lock import _RELEASE_SCRIPT

REDIS_USERS = (
    "dietbot.store.session_repo.get_redis",
    "dietbot.store.profile_repo.get_redis",
    "dietbot.store.campaign_keeper.get_redis",
    "dietbot.utils.lock.get_redis",
    "dietbot.observability.metrics.get_redis",
)


class InMemoryRedis:
    """Thread-safe subset of the redis-py client used by the service (decoded strings)."""

    def __init__(self):
        self._lock = threading.RLock()
        self.data: Dict[str, object] = {}

    def get(self, key):
        with self._lock:
            v = self.data.get(key)
            return v if isinstance(v, str) or v is None else None

    def mget(self, *keys):
        return [self.get(k) for k in keys]

    def set(self, key, value, ex=None, px=None, nx=False):
        with self._lock:
            if nx and key in self.data:
                return None
            self.data[key] = str(value)
            return True

    def mset(self, mapping):
        with self._lock:
            for key, value in mapping.items():
                self.data[key] = str(value)
            return True

    def delete(self, *keys):
        with self._lock:
            return sum(1 for k in keys if self.data.pop(k, None) is not None)

    def incr(self, key, amount=1):
        with self._lock:
            v = int(self.data.get(key) or 0) + int(amount)
            self.data[key] = str(v)
            return v

    def decr(self, key, amount=1):
        return self.incr(key, -int(amount))

    def lpush(self, key, *values):
        with self._lock:
            lst = self.data.setdefault(key, [])
            for v in values:
                lst.insert(0, str(v))
            return len(lst)

    def ltrim(self, key, start, end):
        with self._lock:
            lst = self.data.get(key) or []
            self.data[key] = lst[start:end + 1]
            return True

    def lrange(self, key, start, end):
        with self._lock:
            lst = self.data.get(key) or []
            return list(lst[start:end + 1] if end >= 0 else lst[start:])

    def eval(self, script, numkeys, *args):
        key, arg = args[0], args[1]
        with self._lock:
            if script == _RELEASE_SCRIPT:
                if self.data.get(key) == arg:
                    del self.data[key]
                    return 1
                return 0
            if script == CLAIM_UNIT_SCRIPT:
                taken = int(self.data.get(key) or 0)
                if taken >= int(arg):
                    return 0
                self.data[key] = str(taken + 1)
                return 1
        raise NotImplementedError("script not emulated")


class RecordingPublisher(Publisher):
    mode = "memory"

    def __init__(self):
        self.sent: List[OutboundMessage] = []

    def publish(self, message: OutboundMessage) -> None:
        if message.is_empty():
            return
        self.sent.append(message)

    def for_user(self, user_id: str) -> List[OutboundMessage]:
        return [m for m in self.sent if m.userId == user_id]

    def texts_for(self, user_id: str) -> List[str]:
        out: List[str] = []
        for m in self.for_user(user_id):
            out.extend(m.texts())
        return out

    def clear(self) -> None:
        self.sent = []


@pytest.fixture
def fake_redis():
    r = InMemoryRedis()
    patchers = [patch(target, return_value=r) for target in REDIS_USERS]
    for p in patchers:
        p.start()
    try:
        yield r
    finally:
        for p in patchers:
            p.stop()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def campaign_manager(publisher):
    return CampaignManager(publisher)


@pytest.fixture
def dispatcher(fake_redis, publisher, campaign_manager):
    return Dispatcher(publisher, agents=[campaign_manager], classifier=classify_state)


@pytest.fixture(autouse=True)
def coupon_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "COUPON_IMAGE_DIR", str(tmp_path / "coupons"))
    monkeypatch.setattr(settings, "PUBLIC_BASE_URL", "http://bot.test")
    monkeypatch.setattr(settings, "ADMIN_ACCESS_CODE", "I am Sung Kim!!")
    monkeypatch.setattr(settings, "CAMPAIGN_CLAIM_MODE", "atomic")
    return tmp_path / "coupons"


def text(user_id, content, state=None):
    return InboundMessage(userId=user_id, type="text", textContent=content, state=state)


def image(user_id, reference="http://img.test/coupon.png", state=None):
    return InboundMessage(userId=user_id, type="image", imageContent=reference, state=state)
