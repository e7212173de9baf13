"""AsyncPG pool management for the ledger backend."""

from __future__ import annotations

import logging
from typing import Optional

import asyncpg

from app.settings import settings

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.pool.Pool] = None


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		# 127.0.0.1 avoids the IPv6 localhost lookup on some hosts
		dsn = settings.postgres_url.replace("localhost", "127.0.0.1")
		_pool = await asyncpg.create_pool(
			dsn=dsn,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
			ssl="require" if settings.postgres_ssl else "disable",
		)
		logger.info(
			"postgres pool ready",
			extra={"min_size": settings.postgres_min_pool_size, "max_size": settings.postgres_max_pool_size},
		)
	return _pool


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None
