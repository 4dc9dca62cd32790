"""
Agent base class.

An agent owns one or more top-level states and drives its own integer sub-state
machine through a table of handlers:

    handler(message, scratch) -> next sub-state | END_STATE

Sub-state 0 is always the entry point. Handlers talk to the user through the
publisher and keep per-session values in `scratch`, which the dispatcher persists
with the conversation and clears when the session ends.
"""
from __future__ import annotations
from typing import Any, Callable, Dict, FrozenSet, Optional

from dietbot.api.schemas import InboundMessage
from dietbot.core import states as st
from dietbot.outbound.formatter import OutboundMessage
from dietbot.outbound.publisher import Publisher

Handler = Callable[[InboundMessage, Dict[str, Any]], int]

END_STATE = st.END_STATE


class Agent:
    name: str = "Agent"
    states: FrozenSet[str] = frozenset()
    # Sub-states whose handler expects an image message
    image_states: FrozenSet[int] = frozenset()

    def __init__(self, publisher: Publisher):
        self.publisher = publisher
        self._handlers: Dict[int, Handler] = {}
        self.init()

    def init(self) -> None:
        """Register handlers. Subclasses override."""

    def add_handler(self, sub_state: int, handler: Handler) -> "Agent":
        if sub_state == END_STATE:
            raise ValueError("END_STATE cannot carry a handler")
        self._handlers[int(sub_state)] = handler
        return self

    def get_handler(self, sub_state: int) -> Optional[Handler]:
        return self._handlers.get(int(sub_state))

    def handler_states(self):
        return sorted(self._handlers)

    def accepts_image(self, sub_state: int) -> bool:
        return int(sub_state) in self.image_states

    def publish(self, message: OutboundMessage) -> None:
        self.publisher.publish(message)

    def reject_user_input(self, message: InboundMessage, hint: str) -> None:
        fmt = OutboundMessage(message.userId, replyToken=message.replyToken)
        fmt.append_text("Sorry, I cannot understand your input.").append_text(hint)
        self.publish(fmt)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} states={sorted(self.states)}>"
