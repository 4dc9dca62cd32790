from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from dietbot.core import states as st

@dataclass
class ConversationState:
    userId: str = ""

    # Coarse conversational mode, assigned by the controller / classifier
    topLevelState: str = st.IDLE

    # Agent session: owning agent name + its private integer sub-state.
    # agent is None when no session is in progress.
    agent: Optional[str] = None
    subState: int = 0

    # Agent-private key/value bag, cleared when the session ends
    scratch: Dict[str, Any] = field(default_factory=dict)

    lastUpdatedAtEpoch: Optional[int] = None

    def has_session(self, agent_name: str) -> bool:
        return self.agent == agent_name

    def reset(self) -> None:
        """Back to idle with no agent session."""
        self.topLevelState = st.IDLE
        self.agent = None
        self.subState = 0
        self.scratch = {}


@dataclass
class CampaignState:
    # 0 (or less) means the campaign is closed
    availableCoupon: int = 0
    # Epoch ms of the last campaign opening; 0 if never opened
    campaignStartInstant: int = 0
    currentCouponSerial: int = 0
    claimCount: int = 0

    @property
    def is_open(self) -> bool:
        return self.availableCoupon > 0

    @property
    def supply_exhausted(self) -> bool:
        return self.claimCount >= self.availableCoupon
