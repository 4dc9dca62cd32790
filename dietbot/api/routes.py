from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from dietbot.api.auth import require_api_key
from dietbot.api.normalize import normalize_inbound_payload
from dietbot.api.schemas import DispatchResponse, InboundMessage
from dietbot.core.runtime import get_dispatcher
from dietbot.observability.logging import log
from dietbot.queue.jobs import dispatch_inbound_job
from dietbot.queue.rq_conn import get_queue
from dietbot.settings import settings
import dietbot.store.profile_repo as profiles

router = APIRouter()


@router.post("/webhook", response_model=DispatchResponse, dependencies=[Depends(require_api_key)])
async def webhook(payload: Any = Body(None)):
    """Inbound message from the transport adapter."""
    if not isinstance(payload, dict):
        payload = {}

    normalized = normalize_inbound_payload(payload)
    if not normalized["userId"]:
        raise HTTPException(status_code=422, detail="userId is required")
    try:
        msg = InboundMessage.model_validate(normalized)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors())

    if settings.INBOUND_MODE == "rq":
        q = get_queue()
        q.enqueue(dispatch_inbound_job, msg.model_dump())
        log(event="inbound_queued", userId=msg.userId, type=msg.type)
        return DispatchResponse(status="success", queued=True, userId=msg.userId)

    result = await run_in_threadpool(get_dispatcher().dispatch, msg)
    return DispatchResponse(status="success", **result.to_dict())


@router.post("/users/{user_id}/follow", dependencies=[Depends(require_api_key)])
def follow(user_id: str):
    """First contact from the platform's follow event: creates the profile."""
    profile = profiles.record_follow(user_id)
    log(event="user_followed", userId=user_id)
    return {"userId": user_id, "followTime": profile.get("followTime")}
