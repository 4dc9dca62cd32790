def normalize_inbound_payload(payload: dict) -> dict:
    """
    Accepts the loose shapes transport adapters send and converts them into the
    canonical structure expected by InboundMessage:

    {
      "userId": "...",
      "type": "text|image|transition",
      "state": "...",              # optional
      "textContent": "...",        # text messages
      "imageContent": "...",       # image messages (fetchable reference)
      "messageId": "...",
      "replyToken": "..."
    }
    """
    if payload is None:
        payload = {}

    user_id = (
        payload.get("userId")
        or payload.get("user_id")
        or (payload.get("source") or {}).get("userId")
        or ""
    )

    text = payload.get("textContent")
    if text is None:
        text = payload.get("text")
    image = payload.get("imageContent") or payload.get("image") or payload.get("imageUrl")

    msg_type = payload.get("type")
    if not msg_type:
        # Infer the type when the adapter leaves it out
        if image:
            msg_type = "image"
        elif payload.get("state") and text is None:
            msg_type = "transition"
        else:
            msg_type = "text"

    out = {
        "userId": str(user_id),
        "type": str(msg_type).lower(),
        "state": payload.get("state") or None,
        "textContent": text,
        "imageContent": image,
        "messageId": payload.get("messageId") or payload.get("message_id"),
        "replyToken": payload.get("replyToken") or payload.get("reply_token"),
    }
    return out
