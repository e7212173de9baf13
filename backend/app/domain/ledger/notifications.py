"""Delivery of ledger events after a unit of work commits."""

from __future__ import annotations

import json
import logging
from typing import Protocol, Sequence

from app.domain.ledger import sockets
from app.domain.ledger.models import LedgerEvent
from app.infra.redis import redis_client
from app.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

NOTIFICATION_STREAM = "x:ledger.notifications"
STREAM_MAXLEN = 10_000


class NotificationSink(Protocol):
    async def publish(self, event: LedgerEvent) -> None:
        ...


class RedisStreamNotificationSink:
    """Append events to a Redis stream and push them to connected sockets."""

    def __init__(self, stream: str = NOTIFICATION_STREAM, *, maxlen: int = STREAM_MAXLEN) -> None:
        self._stream = stream
        self._maxlen = maxlen

    async def publish(self, event: LedgerEvent) -> None:
        await redis_client.xadd(
            self._stream,
            {
                "kind": event.kind,
                "user_id": event.user_id,
                "data": json.dumps(event.data, separators=(",", ":"), default=str),
            },
            maxlen=self._maxlen,
        )
        await sockets.emit_event(event.user_id, event.kind, event.data)


async def publish_all(sink: NotificationSink, events: Sequence[LedgerEvent]) -> None:
    """Publish best effort; a failed event is logged and counted, never raised."""
    for event in events:
        try:
            await sink.publish(event)
        except Exception:
            obs_metrics.inc_notification(event.kind, "error")
            logger.warning(
                "ledger notification failed",
                extra={"kind": event.kind, "target_user_id": event.user_id},
                exc_info=True,
            )
            continue
        obs_metrics.inc_notification(event.kind, "ok")
