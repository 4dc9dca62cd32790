"""
Outbound message envelope: an ordered list of message parts addressed to one user.

Part shapes follow the chat platform's reply API:
  {"type": "text", "textContent": "..."}
  {"type": "image", "originalContentUrl": "...", "previewImageUrl": "..."}
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class OutboundMessage:
    userId: str
    messages: List[Dict[str, Any]] = field(default_factory=list)
    replyToken: Optional[str] = None

    def append_text(self, text: str) -> "OutboundMessage":
        self.messages.append({"type": "text", "textContent": text})
        return self

    def append_image(self, original_url: str, preview_url: Optional[str] = None) -> "OutboundMessage":
        self.messages.append({
            "type": "image",
            "originalContentUrl": original_url,
            "previewImageUrl": preview_url or original_url,
        })
        return self

    def texts(self) -> List[str]:
        return [m["textContent"] for m in self.messages if m.get("type") == "text"]

    def is_empty(self) -> bool:
        return not self.messages

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"userId": self.userId, "messages": list(self.messages)}
        if self.replyToken:
            payload["replyToken"] = self.replyToken
        return payload
