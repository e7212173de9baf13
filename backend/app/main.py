"""FastAPI application entrypoint for the MetaBento points backend."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import auth, ops, points, profile
from app.api.errors import install_error_handlers
from app.api.middleware_request_id import RequestIdMiddleware
from app.domain.identity.service import IdentityService
from app.domain.ledger import sockets as ledger_sockets
from app.domain.ledger.notifications import NotificationSink, RedisStreamNotificationSink
from app.domain.ledger.repository import InMemoryLedgerRepository, LedgerRepository
from app.domain.ledger.service import LedgerService
from app.infra import postgres
from app.infra.ledger_repo import PostgresLedgerRepository
from app.obs import init as obs_init
from app.settings import settings

logger = logging.getLogger(__name__)


def build_services(
	app: FastAPI,
	repository: LedgerRepository,
	notification_sink: Optional[NotificationSink] = None,
) -> LedgerService:
	"""Wire the ledger and identity services onto `app.state`."""
	ledger = LedgerService(repository, notification_sink or RedisStreamNotificationSink())
	app.state.ledger_service = ledger
	app.state.identity_service = IdentityService(repository, ledger)
	return ledger


@asynccontextmanager
async def lifespan(app: FastAPI):
	storage = settings.ledger_storage.lower()
	if storage == "memory":
		if settings.is_prod():
			raise RuntimeError("LEDGER_STORAGE=memory is not allowed in production")
		app.state.pg_pool = None
		build_services(app, InMemoryLedgerRepository())
	else:
		pool = await postgres.init_pool()
		app.state.pg_pool = pool
		build_services(app, PostgresLedgerRepository(pool))
	logger.info("ledger ready", extra={"storage": storage})
	try:
		yield
	finally:
		if storage != "memory":
			await postgres.close_pool()


app = FastAPI(title="MetaBento Points API", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(settings.cors_allow_origins)
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else []

# Starlette disallows wildcard '*' with allow_credentials=True
if "*" in allow_origins:
	allow_origins = ["http://localhost:3000", "http://127.0.0.1:3000"] if settings.is_dev() else []

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

# Socket.IO shares the REST origins
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
points_namespace = ledger_sockets.PointsNamespace()
sio.register_namespace(points_namespace)
ledger_sockets.set_namespace(points_namespace)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
obs_init(app)

app.add_middleware(RequestIdMiddleware)

app.include_router(auth.router)
app.include_router(profile.router)
app.include_router(points.router)
app.include_router(ops.router)
