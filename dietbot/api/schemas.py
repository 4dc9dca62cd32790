from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field

SUPPORTED_TYPES = ("text", "image", "transition")

class InboundMessage(BaseModel):
    userId: str
    # Kept as a plain string so unsupported types reach the dispatcher and are dropped there
    type: str = "text"
    # Top-level state; resolved from the session store when absent
    state: Optional[str] = None
    textContent: Optional[str] = None
    # Reference (URL) the image collaborator can fetch
    imageContent: Optional[str] = None
    messageId: Optional[str] = None
    replyToken: Optional[str] = None

class DispatchResponse(BaseModel):
    status: Literal["success", "error"] = "success"
    dispatched: bool = False
    queued: bool = False
    userId: Optional[str] = None
    state: Optional[str] = None
    agent: Optional[str] = None
    subState: Optional[int] = None
    reason: Optional[str] = None

class OutboundEnvelope(BaseModel):
    userId: str
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    replyToken: Optional[str] = None
