"""
Outbound publishers.

Agents only see `publish(message)`. Where the message goes is chosen by
OUTBOUND_MODE:

- "log":  record the envelope in the structured log only (no transport configured)
- "sync": POST inline to PUSH_URL; delivery failure raises
- "rq":   enqueue deliver_outbound_job on the RQ queue (RQ retries)
"""
from __future__ import annotations
from typing import Optional

from rq import Retry

from dietbot.settings import settings
from dietbot.observability.logging import log
from dietbot.outbound.formatter import OutboundMessage
import dietbot.outbound.client as push_client


class Publisher:
    mode = "base"

    def publish(self, message: OutboundMessage) -> None:
        raise NotImplementedError


class LogPublisher(Publisher):
    mode = "log"

    def publish(self, message: OutboundMessage) -> None:
        if message.is_empty():
            return
        log(event="outbound_logged", userId=message.userId, parts=len(message.messages),
            messages=message.messages)


class HttpPublisher(Publisher):
    mode = "sync"

    def publish(self, message: OutboundMessage) -> None:
        if message.is_empty():
            return
        ok, status_code, error = push_client.push_http(
            message.to_payload(), timeout=float(settings.PUSH_TIMEOUT_SEC)
        )
        if not ok:
            log(event="outbound_failed", userId=message.userId, statusCode=status_code, error=error)
            raise RuntimeError(f"Outbound delivery failed: {status_code} {error}")
        log(event="outbound_sent", userId=message.userId, parts=len(message.messages))


class QueuePublisher(Publisher):
    mode = "rq"

    def __init__(self, queue=None):
        self._queue = queue

    def _get_queue(self):
        if self._queue is None:
            from dietbot.queue.rq_conn import get_queue
            self._queue = get_queue()
        return self._queue

    def publish(self, message: OutboundMessage) -> None:
        if message.is_empty():
            return
        from dietbot.queue.jobs import deliver_outbound_job
        self._get_queue().enqueue(
            deliver_outbound_job,
            message.to_payload(),
            retry=Retry(max=3, interval=[2, 10, 30]),
        )
        log(event="outbound_queued", userId=message.userId, parts=len(message.messages))


def get_publisher(mode: Optional[str] = None) -> Publisher:
    mode = (mode or settings.OUTBOUND_MODE or "log").lower()
    if mode == "sync":
        return HttpPublisher()
    if mode == "rq":
        return QueuePublisher()
    return LogPublisher()
