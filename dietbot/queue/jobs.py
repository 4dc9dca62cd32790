from dietbot.api.schemas import InboundMessage, OutboundEnvelope
from dietbot.observability.logging import log
from dietbot.settings import settings
import dietbot.outbound.client as push_client


def dispatch_inbound_job(payload: dict) -> dict:
    """
    Background job: run one inbound message through the dispatcher.
    Not retried; a failed conversational turn is never replayed.
    """
    from dietbot.core.runtime import get_dispatcher

    msg = InboundMessage.model_validate(payload)
    log(event="inbound_job_start", userId=msg.userId, type=msg.type)
    return get_dispatcher().dispatch(msg).to_dict()


def deliver_outbound_job(payload: dict) -> bool:
    """
    Background job: push one outbound envelope to the transport adapter.
    Raises on failure so RQ applies the job's retry policy.
    """
    envelope = OutboundEnvelope.model_validate(payload)
    user_id = envelope.userId
    try:
        log(event="outbound_job_start", userId=user_id, parts=len(envelope.messages))
        ok, status_code, error = push_client.push_http(
            envelope.model_dump(exclude_none=True), timeout=float(settings.PUSH_TIMEOUT_SEC)
        )
        if not ok:
            raise RuntimeError(f"Outbound delivery failed: {status_code} {error}")
        return True
    except Exception as e:
        log(event="outbound_job_exception", userId=user_id, error=str(e))
        raise
