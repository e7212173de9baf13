"""Redis connection management.

Exposes a stable proxy so `from app.infra.redis import redis_client` keeps
pointing at the same object while the underlying client is swapped at runtime
(fakeredis in tests, a fresh client after reconnect).
"""

from __future__ import annotations

import redis.asyncio as redis

from app.settings import settings


class RedisProxy:
	"""Forward attribute access to an underlying Redis client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	async def xadd(self, name, fields, *, maxlen: int | None = None, approximate: bool = True):
		"""Append to a stream, coercing values to strings so every client accepts them."""
		payload = {str(k): "" if v is None else str(v) for k, v in fields.items()}
		return await self._client.xadd(name, payload, maxlen=maxlen, approximate=approximate)

	def __getattr__(self, item):
		return getattr(self._client, item)


_real_client = redis.from_url(settings.redis_url, decode_responses=True)
redis_client: RedisProxy = RedisProxy(_real_client)


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)
