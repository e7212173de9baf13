import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import asyncpg
import pytest

from app.domain.ledger.achievements import AchievementDeriver
from app.domain.ledger.exceptions import (
    DuplicateConnection,
    InsufficientPoints,
    LedgerConflict,
    LedgerIntegrityError,
)
from app.domain.ledger.models import ConnectionType, TransactionReason, User
from app.domain.ledger.points import PointsLedger
from app.infra.ledger_repo import PostgresLedgerRepository, PostgresUnitOfWork

NOW = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _mock_conn():
    conn = AsyncMock()
    conn.transaction = MagicMock()
    conn.transaction.return_value.__aenter__ = AsyncMock(return_value=None)
    conn.transaction.return_value.__aexit__ = AsyncMock(return_value=None)
    return conn


def _mock_pool(conn):
    pool = MagicMock()
    pool.acquire.return_value.__aenter__ = AsyncMock(return_value=conn)
    pool.acquire.return_value.__aexit__ = AsyncMock(return_value=None)
    return pool


def _user_row(user_id, a_points=0):
    return {
        "id": user_id,
        "wallet_address": None,
        "email": "someone@metabento.io",
        "username": "someone",
        "display_name": "Someone",
        "is_public": True,
        "password_hash": None,
        "a_points": a_points,
        "total_connections": 0,
        "created_at": NOW,
        "updated_at": NOW,
    }


@pytest.mark.asyncio
async def test_debit_uses_conditional_update():
    user_id = uuid4()
    conn = _mock_conn()
    conn.fetchrow.return_value = _user_row(user_id, a_points=10)
    conn.fetchval.return_value = None
    uow = PostgresUnitOfWork(conn)

    with pytest.raises(InsufficientPoints):
        await PointsLedger().debit(uow, str(user_id), 50, TransactionReason.TOKEN_SWAP, "swap")

    sql, uid, amount = conn.fetchval.call_args[0]
    assert "a_points >= $2" in sql
    assert uid == user_id
    assert amount == 50
    # no transaction row is written for a rejected debit
    assert conn.fetchrow.await_count == 1


@pytest.mark.asyncio
async def test_insert_connection_unique_violation_maps_to_duplicate():
    conn = _mock_conn()
    conn.fetchrow.side_effect = asyncpg.UniqueViolationError("duplicate key value")
    uow = PostgresUnitOfWork(conn)

    with pytest.raises(DuplicateConnection):
        await uow.insert_connection(str(uuid4()), str(uuid4()), ConnectionType.QR_SCAN, 15, {"from_user_name": "A"})

    params = conn.fetchrow.call_args[0]
    assert "INSERT INTO user_connections" in params[0]
    assert params[3] == "qr_scan"
    assert json.loads(params[5]) == {"from_user_name": "A"}


@pytest.mark.asyncio
async def test_insert_user_unique_violation_names_the_field():
    conn = _mock_conn()
    error = asyncpg.UniqueViolationError("duplicate key value")
    error.constraint_name = "users_username_key"
    conn.fetchrow.side_effect = error
    uow = PostgresUnitOfWork(conn)

    with pytest.raises(LedgerConflict) as excinfo:
        await uow.insert_user(
            email="a@metabento.io", username="taken", display_name=None, wallet_address=None, password_hash=None
        )
    assert excinfo.value.reason == "username_taken"


@pytest.mark.asyncio
async def test_lock_users_orders_ids_and_skips_garbage():
    first, second = sorted([uuid4(), uuid4()])
    conn = _mock_conn()
    conn.fetch.return_value = [_user_row(first), _user_row(second)]
    uow = PostgresUnitOfWork(conn)

    users = await uow.lock_users([str(second), "not-a-uuid", str(first)])

    sql, ids = conn.fetch.call_args[0]
    assert "ORDER BY id FOR UPDATE" in sql
    assert ids == [first, second]
    assert set(users) == {str(first), str(second)}


@pytest.mark.asyncio
async def test_unknown_id_format_is_not_found():
    conn = _mock_conn()
    uow = PostgresUnitOfWork(conn)
    assert await uow.get_user("definitely-not-a-uuid") is None
    conn.fetchrow.assert_not_awaited()


@pytest.mark.asyncio
async def test_unit_of_work_wraps_database_errors():
    conn = _mock_conn()
    repo = PostgresLedgerRepository(_mock_pool(conn))

    with pytest.raises(LedgerIntegrityError):
        async with repo.unit_of_work():
            raise asyncpg.SerializationError("could not serialize access")


@pytest.mark.asyncio
async def test_unit_of_work_passes_domain_errors_through():
    conn = _mock_conn()
    repo = PostgresLedgerRepository(_mock_pool(conn))

    with pytest.raises(DuplicateConnection):
        async with repo.unit_of_work() as uow:
            assert isinstance(uow, PostgresUnitOfWork)
            raise DuplicateConnection()
    conn.transaction.assert_called_once()


@pytest.mark.asyncio
async def test_rank_query_breaks_ties_on_signup_then_id():
    user_id = uuid4()
    conn = _mock_conn()
    conn.fetchval.return_value = 3
    uow = PostgresUnitOfWork(conn)
    rank = await uow.rank_of(User.from_record(_user_row(user_id, a_points=40)))

    assert rank == 3
    sql, points, created_at, uid = conn.fetchval.call_args[0]
    assert "(created_at, id) < ($2, $3)" in sql
    assert (points, created_at, uid) == (40, NOW, UUID(str(user_id)))


@pytest.mark.asyncio
async def test_level_state_locks_only_when_asked():
    user_id = str(uuid4())
    conn = _mock_conn()
    conn.fetchrow.return_value = None
    uow = PostgresUnitOfWork(conn)

    await uow.get_level_state(user_id)
    assert "FOR UPDATE" not in conn.fetchrow.call_args[0][0]

    await uow.get_level_state(user_id, for_update=True)
    assert conn.fetchrow.call_args[0][0].rstrip().endswith("FOR UPDATE")


@pytest.mark.asyncio
async def test_xp_award_reads_level_state_for_update():
    user_id = uuid4()
    conn = _mock_conn()
    conn.fetchrow.side_effect = [
        None,
        {
            "user_id": user_id,
            "total_xp": 15,
            "current_level": 1,
            "level_name": "Newcomer",
            "next_level_xp": 120,
            "connections_made": 1,
            "qr_scans_performed": 1,
            "profile_views": 0,
            "updated_at": NOW,
        },
    ]
    uow = PostgresUnitOfWork(conn)

    state = await AchievementDeriver(PointsLedger()).award_xp(
        uow, str(user_id), 15, [], connections_delta=1, qr_scans_delta=1
    )

    assert state.total_xp == 15
    select_sql = conn.fetchrow.call_args_list[0][0][0]
    assert "FROM user_levels" in select_sql and "FOR UPDATE" in select_sql


@pytest.mark.asyncio
async def test_scan_history_query_filters_type_and_initiator():
    user_id = uuid4()
    conn = _mock_conn()
    conn.fetch.return_value = []
    uow = PostgresUnitOfWork(conn)

    await uow.list_connections(
        str(user_id), limit=20, offset=40, connection_type=ConnectionType.QR_SCAN, initiated_only=True
    )

    sql, uid, limit, offset, ctype, initiated_only = conn.fetch.call_args[0]
    assert "c.metadata->>'initiator_id'" in sql
    assert "OFFSET $3" in sql
    assert (uid, limit, offset, ctype, initiated_only) == (user_id, 20, 40, "qr_scan", True)


@pytest.mark.asyncio
async def test_top_xp_defaults_users_without_level_rows():
    user_id = uuid4()
    conn = _mock_conn()
    conn.fetch.return_value = [
        {
            **_user_row(user_id),
            "total_xp": 0,
            "current_level": 1,
            "level_name": "Newcomer",
            "next_level_xp": 120,
            "connections_made": 0,
            "qr_scans_performed": 0,
            "profile_views": 0,
            "level_updated_at": None,
        }
    ]
    uow = PostgresUnitOfWork(conn)

    rows = await uow.top_xp(10, 20)

    sql, limit, offset = conn.fetch.call_args[0]
    assert "LEFT JOIN user_levels" in sql
    assert "ORDER BY COALESCE(l.total_xp, 0) DESC, u.created_at ASC, u.id ASC" in sql
    assert (limit, offset) == (10, 20)
    user, state = rows[0]
    assert user.id == str(user_id)
    assert state.user_id == str(user_id)
    assert state.total_xp == 0
    assert state.updated_at is None
