import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Iterable, Optional

from dietbot.api.schemas import InboundMessage, SUPPORTED_TYPES
from dietbot.core import states as st
from dietbot.core.agent import Agent
from dietbot.observability.logging import log
import dietbot.observability.metrics as metrics
from dietbot.outbound.formatter import OutboundMessage
from dietbot.outbound.publisher import Publisher
from dietbot.settings import settings
from dietbot.store.session_repo import load_session, save_session
from dietbot.utils.lock import LockUnavailable, user_lock

CANCEL_KEYWORD = "cancel"
GENERIC_FAILURE_REPLY = "Sorry, something went wrong on my side. Session cancelled."
CANCELLED_REPLY = "OK, session cancelled."


@dataclass
class DispatchResult:
    dispatched: bool
    userId: str
    state: Optional[str] = None
    agent: Optional[str] = None
    subState: Optional[int] = None
    reason: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def _is_cancel(msg: InboundMessage) -> bool:
    return msg.type == "text" and (msg.textContent or "").strip().lower() == CANCEL_KEYWORD


class Dispatcher:
    """
    Routes inbound messages to the agent owning the user's top-level state and
    commits the sub-state the handler returns.
    """

    def __init__(
        self,
        publisher: Publisher,
        agents: Iterable[Agent] = (),
        classifier: Optional[Callable[[str], Optional[str]]] = None,
    ):
        self.publisher = publisher
        # Picks a top-level state from free text while the user is idle
        self.classifier = classifier
        self._owners: Dict[str, Agent] = {}
        for agent in agents:
            self.register(agent)

    def register(self, agent: Agent) -> "Dispatcher":
        for state in agent.states:
            owner = self._owners.get(state)
            if owner is not None and owner is not agent:
                raise ValueError(f"State {state} already owned by {owner.name}")
        for state in agent.states:
            self._owners[state] = agent
        return self

    def agent_for(self, state: Optional[str]) -> Optional[Agent]:
        if not state:
            return None
        return self._owners.get(state)

    def owned_states(self):
        return sorted(self._owners)

    def agents(self):
        seen = []
        for agent in self._owners.values():
            if agent not in seen:
                seen.append(agent)
        return seen

    def _drop(self, msg: InboundMessage, reason: str, **fields) -> DispatchResult:
        log(event="message_dropped", userId=msg.userId, type=msg.type, reason=reason, **fields)
        try:
            metrics.increment_dispatch_dropped()
        except Exception:
            pass
        return DispatchResult(dispatched=False, userId=msg.userId, state=msg.state, reason=reason)

    def _fail(self, msg: InboundMessage, session, agent: Agent, sub_state: int, exc: Exception) -> DispatchResult:
        log(
            event="handler_failed",
            userId=msg.userId,
            agent=agent.name,
            subState=sub_state,
            errorType=type(exc).__name__,
            error=str(exc)[:500],
        )
        session.reset()
        save_session(session)
        try:
            metrics.increment_dispatch_failed()
        except Exception:
            pass
        try:
            self.publisher.publish(
                OutboundMessage(msg.userId, replyToken=msg.replyToken).append_text(GENERIC_FAILURE_REPLY)
            )
        except Exception as e:
            log(event="failure_reply_undelivered", userId=msg.userId, errorType=type(e).__name__)
        return DispatchResult(
            dispatched=False, userId=msg.userId, state=st.IDLE, agent=agent.name, reason="handler_failed"
        )

    def dispatch(self, msg: InboundMessage) -> DispatchResult:
        if msg.type not in SUPPORTED_TYPES:
            return self._drop(msg, "unsupported_type")
        if msg.state is not None and not st.is_valid_state(msg.state):
            return self._drop(msg, "unknown_state", state=msg.state)

        try:
            with user_lock(msg.userId, ttl_ms=int(settings.SESSION_LOCK_TTL_MS)):
                return self._dispatch_locked(msg)
        except LockUnavailable:
            return self._drop(msg, "user_busy")

    def _dispatch_locked(self, msg: InboundMessage) -> DispatchResult:
        start = time.time()
        session = load_session(msg.userId)

        state = msg.state or session.topLevelState
        if state == st.IDLE and msg.type == "text" and self.classifier is not None:
            state = self.classifier(msg.textContent or "") or st.IDLE
        if msg.type == "transition" or session.topLevelState != state:
            # Entering a new mode discards whatever session was in progress
            session.reset()
            session.topLevelState = state

        agent = self.agent_for(state)
        if agent is None:
            if msg.type == "transition":
                # Applied even when no agent here serves the state (e.g. back to Idle)
                save_session(session)
                log(event="state_assigned", userId=msg.userId, state=state)
            return self._drop(msg, "no_agent", state=state)

        sub_state = session.subState if session.has_session(agent.name) else 0
        msg = msg.model_copy(update={"state": state})

        if msg.type == "image" and not agent.accepts_image(sub_state):
            return self._drop(msg, "image_not_expected", agent=agent.name, subState=sub_state)

        if sub_state != 0 and _is_cancel(msg):
            session.reset()
            save_session(session)
            self.publisher.publish(
                OutboundMessage(msg.userId, replyToken=msg.replyToken).append_text(CANCELLED_REPLY)
            )
            log(event="session_cancelled", userId=msg.userId, agent=agent.name, subState=sub_state)
            return DispatchResult(
                dispatched=True, userId=msg.userId, state=st.IDLE, agent=agent.name,
                subState=st.END_STATE, reason="cancelled",
            )

        handler = agent.get_handler(sub_state)
        try:
            if handler is None:
                raise LookupError(f"{agent.name} has no handler for sub-state {sub_state}")
            next_state = handler(msg, session.scratch)
            if not isinstance(next_state, int) or isinstance(next_state, bool):
                raise TypeError(f"{agent.name} handler returned {next_state!r}")
            if next_state != st.END_STATE and agent.get_handler(next_state) is None:
                raise LookupError(f"{agent.name} returned unknown sub-state {next_state}")
        except Exception as e:
            return self._fail(msg, session, agent, sub_state, e)

        if next_state == st.END_STATE:
            session.reset()
        else:
            session.agent = agent.name
            session.subState = next_state
        save_session(session)

        duration_ms = int((time.time() - start) * 1000)
        try:
            metrics.increment_dispatch_handled()
            metrics.record_dispatch_latency(duration_ms)
        except Exception:
            pass
        log(
            event="message_dispatched",
            userId=msg.userId,
            type=msg.type,
            state=state,
            agent=agent.name,
            fromSubState=sub_state,
            toSubState=next_state,
            latencyMs=duration_ms,
        )
        return DispatchResult(
            dispatched=True,
            userId=msg.userId,
            state=session.topLevelState,
            agent=agent.name,
            subState=next_state,
        )
