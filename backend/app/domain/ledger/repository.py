"""Storage contract for the ledger and the in-memory reference repository."""

from __future__ import annotations

import asyncio
import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple
from uuid import uuid4

from app.domain.ledger.exceptions import DuplicateConnection, LedgerConflict
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


class LedgerUnitOfWork(Protocol):
    """Operations available inside one atomic unit of work."""

    async def get_user(self, user_id: str, *, for_update: bool = False) -> User | None:
        ...

    async def lock_users(self, user_ids: Sequence[str]) -> Dict[str, User]:
        ...

    async def find_user(
        self,
        *,
        email: str | None = None,
        username: str | None = None,
        wallet_address: str | None = None,
    ) -> User | None:
        ...

    async def insert_user(
        self,
        *,
        email: str | None,
        username: str | None,
        display_name: str | None,
        wallet_address: str | None,
        password_hash: str | None,
    ) -> User:
        ...

    async def set_visibility(self, user_id: str, is_public: bool) -> User | None:
        ...

    async def add_points(self, user_id: str, amount: int) -> int:
        ...

    async def subtract_points(self, user_id: str, amount: int) -> int | None:
        ...

    async def increment_connections(self, user_id: str) -> int:
        ...

    async def connection_exists(self, user_a: str, user_b: str) -> bool:
        ...

    async def insert_connection(
        self,
        from_user_id: str,
        to_user_id: str,
        connection_type: ConnectionType,
        points_awarded: int,
        metadata: Mapping[str, Any],
    ) -> Connection:
        ...

    async def list_connections(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
        connection_type: ConnectionType | None = None,
        initiated_only: bool = False,
    ) -> List[ConnectedUser]:
        ...

    async def count_connections_since(self, user_id: str, since: datetime) -> int:
        ...

    async def insert_transaction(
        self,
        user_id: str,
        points_change: int,
        reason: TransactionReason,
        description: str,
        reference_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> PointsTransaction:
        ...

    async def list_transactions(self, user_id: str, limit: int = 50, offset: int = 0) -> List[PointsTransaction]:
        ...

    async def sum_transactions(self, user_id: str) -> int:
        ...

    async def sum_positive_since(self, user_id: str, since: datetime) -> int:
        ...

    async def insert_achievement(self, user_id: str, definition: AchievementDefinition) -> Achievement | None:
        ...

    async def list_achievements(self, user_id: str) -> List[Achievement]:
        ...

    async def get_level_state(self, user_id: str, *, for_update: bool = False) -> LevelState | None:
        ...

    async def save_level_state(self, state: LevelState) -> LevelState:
        ...

    async def rank_of(self, user: User) -> int:
        ...

    async def top_users(self, limit: int) -> List[User]:
        ...

    async def top_xp(self, limit: int, offset: int = 0) -> List[Tuple[User, LevelState]]:
        ...

    async def insert_swap(
        self,
        user_id: str,
        points_swapped: int,
        token_amount: float,
        wallet_address: str | None,
        status: SwapStatus = SwapStatus.PENDING,
    ) -> TokenSwap:
        ...

    async def list_swaps(self, user_id: str, limit: int = 50) -> List[TokenSwap]:
        ...


class LedgerRepository(Protocol):
    """Factory for units of work. Any exception inside the block rolls back every write."""

    def unit_of_work(self) -> Any:  # async context manager yielding LedgerUnitOfWork
        ...


def ranking_key(user: User) -> Tuple[int, datetime, str]:
    """Descending balance, then earlier signup, then smaller id."""
    return (-user.a_points, user.created_at, user.id)


@dataclass(slots=True)
class _MemoryState:
    users: Dict[str, User] = field(default_factory=dict)
    connections: List[Connection] = field(default_factory=list)
    transactions: List[PointsTransaction] = field(default_factory=list)
    achievements: List[Achievement] = field(default_factory=list)
    levels: Dict[str, LevelState] = field(default_factory=dict)
    swaps: List[TokenSwap] = field(default_factory=list)
    last_tick: datetime = datetime.min.replace(tzinfo=timezone.utc)


class InMemoryUnitOfWork(LedgerUnitOfWork):
    """Unit of work over a private state snapshot; the repository decides whether it sticks."""

    def __init__(self, state: _MemoryState) -> None:
        self._state = state

    def _now(self) -> datetime:
        # strictly increasing so ordering by time is deterministic
        now = datetime.now(timezone.utc)
        if now <= self._state.last_tick:
            now = self._state.last_tick + timedelta(microseconds=1)
        self._state.last_tick = now
        return now

    def _require(self, user_id: str) -> User:
        user = self._state.users.get(user_id)
        if user is None:
            raise KeyError(user_id)
        return user

    async def get_user(self, user_id: str, *, for_update: bool = False) -> User | None:
        user = self._state.users.get(str(user_id))
        return replace(user) if user else None

    async def lock_users(self, user_ids: Sequence[str]) -> Dict[str, User]:
        found: Dict[str, User] = {}
        for user_id in sorted({str(uid) for uid in user_ids}):
            user = self._state.users.get(user_id)
            if user is not None:
                found[user_id] = replace(user)
        return found

    async def find_user(
        self,
        *,
        email: str | None = None,
        username: str | None = None,
        wallet_address: str | None = None,
    ) -> User | None:
        for user in self._state.users.values():
            if email is not None and user.email == email:
                return replace(user)
            if username is not None and user.username == username:
                return replace(user)
            if wallet_address is not None and user.wallet_address == wallet_address:
                return replace(user)
        return None

    async def insert_user(
        self,
        *,
        email: str | None,
        username: str | None,
        display_name: str | None,
        wallet_address: str | None,
        password_hash: str | None,
    ) -> User:
        for attr, value in (("email", email), ("username", username), ("wallet_address", wallet_address)):
            if value is not None and any(getattr(u, attr) == value for u in self._state.users.values()):
                raise LedgerConflict(f"{attr}_taken")
        now = self._now()
        user = User(
            id=str(uuid4()),
            created_at=now,
            updated_at=now,
            wallet_address=wallet_address,
            email=email,
            username=username,
            display_name=display_name,
            password_hash=password_hash,
        )
        self._state.users[user.id] = user
        return replace(user)

    async def set_visibility(self, user_id: str, is_public: bool) -> User | None:
        user = self._state.users.get(str(user_id))
        if user is None:
            return None
        user.is_public = is_public
        user.updated_at = self._now()
        return replace(user)

    async def add_points(self, user_id: str, amount: int) -> int:
        user = self._require(user_id)
        user.a_points += amount
        user.updated_at = self._now()
        return user.a_points

    async def subtract_points(self, user_id: str, amount: int) -> int | None:
        user = self._require(user_id)
        if user.a_points < amount:
            return None
        user.a_points -= amount
        user.updated_at = self._now()
        return user.a_points

    async def increment_connections(self, user_id: str) -> int:
        user = self._require(user_id)
        user.total_connections += 1
        return user.total_connections

    async def connection_exists(self, user_a: str, user_b: str) -> bool:
        pair = {str(user_a), str(user_b)}
        return any({c.from_user_id, c.to_user_id} == pair for c in self._state.connections)

    async def insert_connection(
        self,
        from_user_id: str,
        to_user_id: str,
        connection_type: ConnectionType,
        points_awarded: int,
        metadata: Mapping[str, Any],
    ) -> Connection:
        if any(c.from_user_id == from_user_id and c.to_user_id == to_user_id for c in self._state.connections):
            raise DuplicateConnection()
        connection = Connection(
            id=str(uuid4()),
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            connection_type=connection_type,
            points_awarded=points_awarded,
            created_at=self._now(),
            metadata=dict(metadata),
        )
        self._state.connections.append(connection)
        return replace(connection, metadata=dict(connection.metadata))

    async def list_connections(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
        connection_type: ConnectionType | None = None,
        initiated_only: bool = False,
    ) -> List[ConnectedUser]:
        rows = [c for c in self._state.connections if c.from_user_id == str(user_id)]
        if connection_type is not None:
            rows = [c for c in rows if c.connection_type is connection_type]
        if initiated_only:
            rows = [c for c in rows if c.metadata.get("initiator_id") == str(user_id)]
        rows.sort(key=lambda c: c.created_at, reverse=True)
        result: List[ConnectedUser] = []
        for connection in rows[offset : offset + limit]:
            other = self._state.users[connection.to_user_id]
            result.append(
                ConnectedUser(
                    connection=replace(connection, metadata=dict(connection.metadata)),
                    user_id=other.id,
                    username=other.username,
                    display_name=other.display_name,
                    is_public=other.is_public,
                )
            )
        return result

    async def count_connections_since(self, user_id: str, since: datetime) -> int:
        return sum(
            1 for c in self._state.connections if c.from_user_id == str(user_id) and c.created_at >= since
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
        transaction = PointsTransaction(
            id=str(uuid4()),
            user_id=str(user_id),
            points_change=points_change,
            reason=reason,
            description=description,
            created_at=self._now(),
            reference_id=reference_id,
            metadata=dict(metadata or {}),
        )
        self._state.transactions.append(transaction)
        return replace(transaction)

    async def list_transactions(self, user_id: str, limit: int = 50, offset: int = 0) -> List[PointsTransaction]:
        rows = [replace(t) for t in reversed(self._state.transactions) if t.user_id == str(user_id)]
        return rows[offset : offset + limit]

    async def sum_transactions(self, user_id: str) -> int:
        return sum(t.points_change for t in self._state.transactions if t.user_id == str(user_id))

    async def sum_positive_since(self, user_id: str, since: datetime) -> int:
        return sum(
            t.points_change
            for t in self._state.transactions
            if t.user_id == str(user_id) and t.points_change > 0 and t.created_at >= since
        )

    async def insert_achievement(self, user_id: str, definition: AchievementDefinition) -> Achievement | None:
        if any(
            a.user_id == str(user_id) and a.achievement_type == definition.type for a in self._state.achievements
        ):
            return None
        achievement = Achievement(
            id=str(uuid4()),
            user_id=str(user_id),
            achievement_type=definition.type,
            name=definition.name,
            description=definition.description,
            points_awarded=definition.points,
            unlocked_at=self._now(),
        )
        self._state.achievements.append(achievement)
        return replace(achievement)

    async def list_achievements(self, user_id: str) -> List[Achievement]:
        rows = [replace(a) for a in self._state.achievements if a.user_id == str(user_id)]
        rows.sort(key=lambda a: a.unlocked_at, reverse=True)
        return rows

    async def get_level_state(self, user_id: str, *, for_update: bool = False) -> LevelState | None:
        state = self._state.levels.get(str(user_id))
        return replace(state) if state else None

    async def save_level_state(self, state: LevelState) -> LevelState:
        stored = replace(state, updated_at=self._now())
        self._state.levels[stored.user_id] = stored
        return replace(stored)

    async def rank_of(self, user: User) -> int:
        key = ranking_key(user)
        return 1 + sum(1 for other in self._state.users.values() if ranking_key(other) < key)

    async def top_users(self, limit: int) -> List[User]:
        ordered = sorted(self._state.users.values(), key=ranking_key)
        return [replace(user) for user in ordered[:limit]]

    async def top_xp(self, limit: int, offset: int = 0) -> List[Tuple[User, LevelState]]:
        rows = [
            (user, self._state.levels.get(user.id) or LevelState(user_id=user.id))
            for user in self._state.users.values()
        ]
        rows.sort(key=lambda pair: (-pair[1].total_xp, pair[0].created_at, pair[0].id))
        return [(replace(user), replace(state)) for user, state in rows[offset : offset + limit]]

    async def insert_swap(
        self,
        user_id: str,
        points_swapped: int,
        token_amount: float,
        wallet_address: str | None,
        status: SwapStatus = SwapStatus.PENDING,
    ) -> TokenSwap:
        swap = TokenSwap(
            id=str(uuid4()),
            user_id=str(user_id),
            points_swapped=points_swapped,
            token_amount=token_amount,
            status=status,
            created_at=self._now(),
            wallet_address=wallet_address,
        )
        self._state.swaps.append(swap)
        return replace(swap)

    async def list_swaps(self, user_id: str, limit: int = 50) -> List[TokenSwap]:
        rows = [replace(s) for s in reversed(self._state.swaps) if s.user_id == str(user_id)]
        return rows[:limit]


class InMemoryLedgerRepository(LedgerRepository):
    """Reference repository used in tests and developer environments.

    Units of work are serialised with a lock and run against a deep copy of the
    state, which replaces the live state only when the block exits cleanly.
    """

    def __init__(self) -> None:
        self._state = _MemoryState()
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[InMemoryUnitOfWork]:
        async with self._lock:
            working = copy.deepcopy(self._state)
            yield InMemoryUnitOfWork(working)
            self._state = working

    def snapshot(self) -> _MemoryState:
        """Copy of the committed state, for assertions."""
        return copy.deepcopy(self._state)

    def add_user(self, user: User) -> User:
        """Seed a user row directly, bypassing registration."""
        self._state.users[user.id] = replace(user)
        return replace(user)
