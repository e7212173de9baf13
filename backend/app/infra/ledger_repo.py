"""PostgreSQL-backed ledger repository."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple
from uuid import UUID

import asyncpg

from app.domain.ledger.exceptions import DuplicateConnection, LedgerConflict, LedgerIntegrityError
from app.domain.ledger.models import (
    Achievement,
    AchievementDefinition,
    ConnectedUser,
    Connection,
    ConnectionType,
    LevelState,
    PointsTransaction,
    SwapStatus,
    TokenSwap,
    TransactionReason,
    User,
)
from app.domain.ledger.repository import LedgerRepository, LedgerUnitOfWork

logger = logging.getLogger(__name__)

_USER_COLUMNS = """
    id, wallet_address, email, username, display_name, is_public, password_hash,
    a_points, total_connections, created_at, updated_at
"""
_CONNECTION_COLUMNS = "id, from_user_id, to_user_id, connection_type, points_awarded, metadata, created_at"
_TRANSACTION_COLUMNS = "id, user_id, points_change, reason, description, reference_id, metadata, created_at"
_ACHIEVEMENT_COLUMNS = "id, user_id, achievement_type, name, description, points_awarded, unlocked_at"
_LEVEL_COLUMNS = """
    user_id, total_xp, current_level, level_name, next_level_xp,
    connections_made, qr_scans_performed, profile_views, updated_at
"""
_SWAP_COLUMNS = "id, user_id, points_swapped, token_amount, wallet_address, status, created_at"

_UNIQUE_USER_CONSTRAINTS = {
    "users_email_key": "email_taken",
    "users_username_key": "username_taken",
    "users_wallet_address_key": "wallet_address_taken",
}


def _as_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def _json_field(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def _row_with_json(row: asyncpg.Record) -> Dict[str, Any]:
    data = dict(row)
    data["metadata"] = _json_field(data.get("metadata"))
    return data


def _row_to_user(row: asyncpg.Record) -> User:
    return User.from_record(row)


def _row_to_connection(row: asyncpg.Record) -> Connection:
    return Connection.from_record(_row_with_json(row))


def _row_to_transaction(row: asyncpg.Record) -> PointsTransaction:
    return PointsTransaction.from_record(_row_with_json(row))


class PostgresUnitOfWork(LedgerUnitOfWork):
    """Ledger operations bound to one connection inside an open transaction."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def get_user(self, user_id: str, *, for_update: bool = False) -> User | None:
        uid = _as_uuid(user_id)
        if uid is None:
            return None
        suffix = " FOR UPDATE" if for_update else ""
        row = await self._conn.fetchrow(f"SELECT {_USER_COLUMNS} FROM users WHERE id = $1{suffix}", uid)
        return _row_to_user(row) if row else None

    async def lock_users(self, user_ids: Sequence[str]) -> Dict[str, User]:
        uids = sorted({uid for uid in (_as_uuid(value) for value in user_ids) if uid is not None})
        if not uids:
            return {}
        # id order keeps concurrent connects on the same pair from deadlocking
        rows = await self._conn.fetch(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = ANY($1::uuid[]) ORDER BY id FOR UPDATE",
            uids,
        )
        return {str(row["id"]): _row_to_user(row) for row in rows}

    async def find_user(
        self,
        *,
        email: str | None = None,
        username: str | None = None,
        wallet_address: str | None = None,
    ) -> User | None:
        row = await self._conn.fetchrow(
            f"""
            SELECT {_USER_COLUMNS} FROM users
            WHERE ($1::text IS NOT NULL AND email = $1)
               OR ($2::text IS NOT NULL AND username = $2)
               OR ($3::text IS NOT NULL AND wallet_address = $3)
            LIMIT 1
            """,
            email,
            username,
            wallet_address,
        )
        return _row_to_user(row) if row else None

    async def insert_user(
        self,
        *,
        email: str | None,
        username: str | None,
        display_name: str | None,
        wallet_address: str | None,
        password_hash: str | None,
    ) -> User:
        try:
            row = await self._conn.fetchrow(
                f"""
                INSERT INTO users (email, username, display_name, wallet_address, password_hash)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING {_USER_COLUMNS}
                """,
                email,
                username,
                display_name,
                wallet_address,
                password_hash,
            )
        except asyncpg.UniqueViolationError as exc:
            raise LedgerConflict(_UNIQUE_USER_CONSTRAINTS.get(exc.constraint_name or "", "conflict")) from exc
        return _row_to_user(row)

    async def set_visibility(self, user_id: str, is_public: bool) -> User | None:
        uid = _as_uuid(user_id)
        if uid is None:
            return None
        row = await self._conn.fetchrow(
            f"UPDATE users SET is_public = $2, updated_at = NOW() WHERE id = $1 RETURNING {_USER_COLUMNS}",
            uid,
            is_public,
        )
        return _row_to_user(row) if row else None

    async def add_points(self, user_id: str, amount: int) -> int:
        return await self._conn.fetchval(
            "UPDATE users SET a_points = a_points + $2, updated_at = NOW() WHERE id = $1 RETURNING a_points",
            UUID(user_id),
            amount,
        )

    async def subtract_points(self, user_id: str, amount: int) -> int | None:
        return await self._conn.fetchval(
            """
            UPDATE users SET a_points = a_points - $2, updated_at = NOW()
            WHERE id = $1 AND a_points >= $2
            RETURNING a_points
            """,
            UUID(user_id),
            amount,
        )

    async def increment_connections(self, user_id: str) -> int:
        return await self._conn.fetchval(
            "UPDATE users SET total_connections = total_connections + 1 WHERE id = $1 RETURNING total_connections",
            UUID(user_id),
        )

    async def connection_exists(self, user_a: str, user_b: str) -> bool:
        a, b = _as_uuid(user_a), _as_uuid(user_b)
        if a is None or b is None:
            return False
        found = await self._conn.fetchval(
            """
            SELECT 1 FROM user_connections
            WHERE (from_user_id = $1 AND to_user_id = $2)
               OR (from_user_id = $2 AND to_user_id = $1)
            LIMIT 1
            """,
            a,
            b,
        )
        return found is not None

    async def insert_connection(
        self,
        from_user_id: str,
        to_user_id: str,
        connection_type: ConnectionType,
        points_awarded: int,
        metadata: Mapping[str, Any],
    ) -> Connection:
        try:
            row = await self._conn.fetchrow(
                f"""
                INSERT INTO user_connections (from_user_id, to_user_id, connection_type, points_awarded, metadata)
                VALUES ($1, $2, $3, $4, $5::jsonb)
                RETURNING {_CONNECTION_COLUMNS}
                """,
                UUID(from_user_id),
                UUID(to_user_id),
                connection_type.value,
                points_awarded,
                json.dumps(dict(metadata)),
            )
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateConnection() from exc
        return _row_to_connection(row)

    async def list_connections(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
        connection_type: ConnectionType | None = None,
        initiated_only: bool = False,
    ) -> List[ConnectedUser]:
        uid = _as_uuid(user_id)
        if uid is None:
            return []
        rows = await self._conn.fetch(
            """
            SELECT c.id, c.from_user_id, c.to_user_id, c.connection_type, c.points_awarded,
                   c.metadata, c.created_at, u.username, u.display_name, u.is_public
            FROM user_connections c
            JOIN users u ON u.id = c.to_user_id
            WHERE c.from_user_id = $1
              AND ($4::text IS NULL OR c.connection_type = $4)
              AND (NOT $5::boolean OR c.metadata->>'initiator_id' = c.from_user_id::text)
            ORDER BY c.created_at DESC, c.id DESC
            LIMIT $2 OFFSET $3
            """,
            uid,
            limit,
            offset,
            connection_type.value if connection_type is not None else None,
            initiated_only,
        )
        return [
            ConnectedUser(
                connection=_row_to_connection(row),
                user_id=str(row["to_user_id"]),
                username=row["username"],
                display_name=row["display_name"],
                is_public=bool(row["is_public"]),
            )
            for row in rows
        ]

    async def count_connections_since(self, user_id: str, since: datetime) -> int:
        return await self._conn.fetchval(
            "SELECT COUNT(*) FROM user_connections WHERE from_user_id = $1 AND created_at >= $2",
            UUID(user_id),
            since,
        )

    async def insert_transaction(
        self,
        user_id: str,
        points_change: int,
        reason: TransactionReason,
        description: str,
        reference_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> PointsTransaction:
        row = await self._conn.fetchrow(
            f"""
            INSERT INTO a_points_transactions (user_id, points_change, reason, description, reference_id, metadata)
            VALUES ($1, $2, $3, $4, $5, $6::jsonb)
            RETURNING {_TRANSACTION_COLUMNS}
            """,
            UUID(user_id),
            points_change,
            reason.value,
            description,
            reference_id,
            json.dumps(dict(metadata or {}), default=str),
        )
        return _row_to_transaction(row)

    async def list_transactions(self, user_id: str, limit: int = 50, offset: int = 0) -> List[PointsTransaction]:
        uid = _as_uuid(user_id)
        if uid is None:
            return []
        rows = await self._conn.fetch(
            f"""
            SELECT {_TRANSACTION_COLUMNS} FROM a_points_transactions
            WHERE user_id = $1
            ORDER BY created_at DESC, id DESC
            LIMIT $2 OFFSET $3
            """,
            uid,
            limit,
            offset,
        )
        return [_row_to_transaction(row) for row in rows]

    async def sum_transactions(self, user_id: str) -> int:
        return await self._conn.fetchval(
            "SELECT COALESCE(SUM(points_change), 0) FROM a_points_transactions WHERE user_id = $1",
            UUID(user_id),
        )

    async def sum_positive_since(self, user_id: str, since: datetime) -> int:
        return await self._conn.fetchval(
            """
            SELECT COALESCE(SUM(points_change), 0) FROM a_points_transactions
            WHERE user_id = $1 AND points_change > 0 AND created_at >= $2
            """,
            UUID(user_id),
            since,
        )

    async def insert_achievement(self, user_id: str, definition: AchievementDefinition) -> Achievement | None:
        row = await self._conn.fetchrow(
            f"""
            INSERT INTO user_achievements (user_id, achievement_type, name, description, points_awarded)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (user_id, achievement_type) DO NOTHING
            RETURNING {_ACHIEVEMENT_COLUMNS}
            """,
            UUID(user_id),
            definition.type.value,
            definition.name,
            definition.description,
            definition.points,
        )
        return Achievement.from_record(row) if row else None

    async def list_achievements(self, user_id: str) -> List[Achievement]:
        rows = await self._conn.fetch(
            f"SELECT {_ACHIEVEMENT_COLUMNS} FROM user_achievements WHERE user_id = $1 ORDER BY unlocked_at DESC",
            UUID(user_id),
        )
        return [Achievement.from_record(row) for row in rows]

    async def get_level_state(self, user_id: str, *, for_update: bool = False) -> LevelState | None:
        suffix = " FOR UPDATE" if for_update else ""
        row = await self._conn.fetchrow(
            f"SELECT {_LEVEL_COLUMNS} FROM user_levels WHERE user_id = $1{suffix}",
            UUID(user_id),
        )
        return LevelState.from_record(row) if row else None

    async def save_level_state(self, state: LevelState) -> LevelState:
        row = await self._conn.fetchrow(
            f"""
            INSERT INTO user_levels (
                user_id, total_xp, current_level, level_name, next_level_xp,
                connections_made, qr_scans_performed, profile_views, updated_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, NOW())
            ON CONFLICT (user_id) DO UPDATE
            SET total_xp = EXCLUDED.total_xp,
                current_level = EXCLUDED.current_level,
                level_name = EXCLUDED.level_name,
                next_level_xp = EXCLUDED.next_level_xp,
                connections_made = EXCLUDED.connections_made,
                qr_scans_performed = EXCLUDED.qr_scans_performed,
                profile_views = EXCLUDED.profile_views,
                updated_at = NOW()
            RETURNING {_LEVEL_COLUMNS}
            """,
            UUID(state.user_id),
            state.total_xp,
            state.current_level,
            state.level_name,
            state.next_level_xp,
            state.connections_made,
            state.qr_scans_performed,
            state.profile_views,
        )
        return LevelState.from_record(row)

    async def rank_of(self, user: User) -> int:
        return await self._conn.fetchval(
            """
            SELECT COUNT(*) + 1 FROM users
            WHERE a_points > $1
               OR (a_points = $1 AND (created_at, id) < ($2, $3))
            """,
            user.a_points,
            user.created_at,
            UUID(user.id),
        )

    async def top_users(self, limit: int) -> List[User]:
        rows = await self._conn.fetch(
            f"SELECT {_USER_COLUMNS} FROM users ORDER BY a_points DESC, created_at ASC, id ASC LIMIT $1",
            limit,
        )
        return [_row_to_user(row) for row in rows]

    async def top_xp(self, limit: int, offset: int = 0) -> List[Tuple[User, LevelState]]:
        # users without a level row rank with zero xp
        rows = await self._conn.fetch(
            """
            SELECT u.id, u.wallet_address, u.email, u.username, u.display_name, u.is_public,
                   u.password_hash, u.a_points, u.total_connections, u.created_at, u.updated_at,
                   COALESCE(l.total_xp, 0) AS total_xp,
                   COALESCE(l.current_level, 1) AS current_level,
                   COALESCE(l.level_name, 'Newcomer') AS level_name,
                   COALESCE(l.next_level_xp, 120) AS next_level_xp,
                   COALESCE(l.connections_made, 0) AS connections_made,
                   COALESCE(l.qr_scans_performed, 0) AS qr_scans_performed,
                   COALESCE(l.profile_views, 0) AS profile_views,
                   l.updated_at AS level_updated_at
            FROM users u
            LEFT JOIN user_levels l ON l.user_id = u.id
            ORDER BY COALESCE(l.total_xp, 0) DESC, u.created_at ASC, u.id ASC
            LIMIT $1 OFFSET $2
            """,
            limit,
            offset,
        )
        return [
            (
                _row_to_user(row),
                LevelState.from_record({**dict(row), "user_id": row["id"], "updated_at": row["level_updated_at"]}),
            )
            for row in rows
        ]

    async def insert_swap(
        self,
        user_id: str,
        points_swapped: int,
        token_amount: float,
        wallet_address: str | None,
        status: SwapStatus = SwapStatus.PENDING,
    ) -> TokenSwap:
        row = await self._conn.fetchrow(
            f"""
            INSERT INTO token_swaps (user_id, points_swapped, token_amount, wallet_address, status)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING {_SWAP_COLUMNS}
            """,
            UUID(user_id),
            points_swapped,
            Decimal(str(token_amount)),
            wallet_address,
            status.value,
        )
        return TokenSwap.from_record(row)

    async def list_swaps(self, user_id: str, limit: int = 50) -> List[TokenSwap]:
        uid = _as_uuid(user_id)
        if uid is None:
            return []
        rows = await self._conn.fetch(
            f"SELECT {_SWAP_COLUMNS} FROM token_swaps WHERE user_id = $1 ORDER BY created_at DESC LIMIT $2",
            uid,
            limit,
        )
        return [TokenSwap.from_record(row) for row in rows]


class PostgresLedgerRepository(LedgerRepository):
    """Runs each unit of work as one asyncpg transaction on a pooled connection."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[PostgresUnitOfWork]:
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    yield PostgresUnitOfWork(conn)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            logger.warning("ledger transaction failed", extra={"error": type(exc).__name__}, exc_info=True)
            raise LedgerIntegrityError() from exc
