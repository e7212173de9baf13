"""Fixed-window rate limiting backed by Redis counters."""

from __future__ import annotations

import logging
import math
import time
from typing import Optional

from app.infra.redis import redis_client

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
	"""Raised when the rate limit has been hit."""

	reason = "rate_limited"

	def __init__(self, kind: str, retry_after: int = 60) -> None:
		super().__init__(f"{kind}:{self.reason}")
		self.kind = kind
		self.retry_after = retry_after


async def allow(
	kind: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 60,
	now: Optional[float] = None,
) -> bool:
	"""Return True while the actor is still within `limit` calls for the current window."""

	if limit <= 0:
		return False
	now = now or time.time()
	window = max(1, int(window_seconds))
	slot = int(math.floor(now / window))
	key = f"rl:{kind}:{actor_id}:{slot}:{window}"
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, window)
		count, _ = await pipe.execute()
	if int(count) > limit:
		logger.info("rate limit hit", extra={"kind": kind, "actor_id": actor_id, "count": int(count)})
		return False
	return True
