"""Process-wide wiring: one dispatcher with every agent this service runs."""
from typing import Optional

from dietbot.core.campaign import CampaignManager
from dietbot.core.dispatcher import Dispatcher
from dietbot.intel.keywords import classify_state
from dietbot.outbound.publisher import Publisher, get_publisher

_dispatcher: Optional[Dispatcher] = None


def build_dispatcher(publisher: Optional[Publisher] = None) -> Dispatcher:
    publisher = publisher or get_publisher()
    return Dispatcher(
        publisher,
        agents=[CampaignManager(publisher)],
        classifier=classify_state,
    )


def get_dispatcher() -> Dispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = build_dispatcher()
    return _dispatcher


def reset_dispatcher() -> None:
    global _dispatcher
    _dispatcher = None
