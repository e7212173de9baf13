import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from app.domain.ledger.models import LedgerEvent, User
from app.domain.ledger.repository import InMemoryLedgerRepository
from app.domain.ledger.service import LedgerService
from app.infra import postgres
from app.infra.auth import ADMIN_ROLE, AuthenticatedUser
from app.main import app, build_services
from app.settings import settings

SEED_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class RecordingNotificationSink:
	"""Keeps published ledger events in memory."""

	def __init__(self) -> None:
		self.events: List[LedgerEvent] = []

	async def publish(self, event: LedgerEvent) -> None:
		self.events.append(event)

	def kinds(self, user_id: Optional[str] = None) -> List[str]:
		return [e.kind for e in self.events if user_id is None or e.user_id == user_id]


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from app.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via X-User-Id/X-User-Roles headers, which are only
	accepted in dev mode.
	"""
	original_env = settings.environment
	original_admins = settings.ledger_admin_ids
	settings.environment = "dev"
	settings.ledger_admin_ids = ()
	try:
		yield
	finally:
		settings.environment = original_env
		settings.ledger_admin_ids = original_admins


@pytest.fixture
def notification_sink():
	return RecordingNotificationSink()


@pytest.fixture
def ledger_repo():
	return InMemoryLedgerRepository()


@pytest.fixture
def ledger_service(ledger_repo, notification_sink):
	return LedgerService(ledger_repo, notification_sink, connect_per_minute=1000)


@pytest.fixture
def admin():
	return AuthenticatedUser(id="admin-ops", roles=(ADMIN_ROLE,))


@pytest.fixture
def make_user(ledger_repo):
	"""Seed users straight into the repository with ascending signup times."""
	counter = {"n": 0}

	def _make(
		username: Optional[str] = None,
		*,
		a_points: int = 0,
		total_connections: int = 0,
		is_public: bool = True,
		wallet_address: Optional[str] = None,
		created_at: Optional[datetime] = None,
	) -> User:
		counter["n"] += 1
		created = created_at or SEED_EPOCH + timedelta(minutes=counter["n"])
		user = User(
			id=str(uuid4()),
			created_at=created,
			updated_at=created,
			username=username or f"member_{counter['n']}",
			display_name=(username or f"member_{counter['n']}").title(),
			is_public=is_public,
			wallet_address=wallet_address,
			a_points=a_points,
			total_connections=total_connections,
		)
		return ledger_repo.add_user(user)

	return _make


@pytest.fixture
def as_caller():
	def _caller(user: User) -> AuthenticatedUser:
		return AuthenticatedUser(id=user.id)

	return _caller


@pytest_asyncio.fixture
async def api_client(ledger_repo, notification_sink):
	build_services(app, ledger_repo, notification_sink)
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
