"""Ledger service: connections, balances, progression and token swaps."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, List, Optional

from app.domain.ledger import notifications
from app.domain.ledger.achievements import AchievementDeriver
from app.domain.ledger.exceptions import (
    AwardOverCap,
    BelowMinimum,
    ConnectRateLimitExceeded,
    DuplicateConnection,
    InsufficientPoints,
    InvalidAmount,
    LedgerError,
    LedgerValidationError,
    SelfConnection,
    Unauthorized,
    UserNotFound,
)
from app.domain.ledger.models import (
    ADMIN_AWARD_REASONS,
    CONNECTION_POINTS,
    FIRST_CONNECTION_BONUS,
    Achievement,
    AwardResult,
    ConnectedUser,
    ConnectionResult,
    ConnectionType,
    LeaderboardEntry,
    LedgerEvent,
    LevelState,
    PointsTransaction,
    SideResult,
    SwapResult,
    TokenSwap,
    TransactionReason,
    UserStats,
    XPLeaderboardEntry,
)
from app.domain.ledger.points import PointsLedger
from app.domain.ledger.repository import LedgerRepository
from app.infra import rate_limit
from app.infra.auth import AuthenticatedUser
from app.obs import metrics as obs_metrics
from app.settings import settings

logger = logging.getLogger(__name__)

RECENT_TRANSACTIONS = 10
STATS_WINDOW = timedelta(days=7)
DEFAULT_LEADERBOARD_LIMIT = 10
MAX_LEADERBOARD_LIMIT = 100


def _coerce_connection_type(value: ConnectionType | str) -> ConnectionType:
    try:
        return ConnectionType(value)
    except ValueError:
        raise LedgerValidationError("invalid_connection_type") from None


class LedgerService:
    """Coordinates the points ledger, connection ledger and achievement deriver.

    All validation happens before the unit of work opens. Notifications collected
    during a unit of work are published only after it commits.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        notification_sink: notifications.NotificationSink,
        *,
        max_admin_award: int | None = None,
        min_swap_points: int | None = None,
        exchange_rate: int | None = None,
        connect_per_minute: int | None = None,
    ) -> None:
        self._repository = repository
        self._notifications = notification_sink
        self._points = PointsLedger()
        self._deriver = AchievementDeriver(self._points)
        self._max_admin_award = max_admin_award if max_admin_award is not None else settings.ledger_max_admin_award
        self._min_swap_points = min_swap_points if min_swap_points is not None else settings.ledger_min_swap_points
        self._exchange_rate = exchange_rate if exchange_rate is not None else settings.ledger_exchange_rate
        self._connect_per_minute = (
            connect_per_minute if connect_per_minute is not None else settings.connect_per_minute
        )

    @property
    def repository(self) -> LedgerRepository:
        return self._repository

    @property
    def exchange_rate(self) -> int:
        return self._exchange_rate

    @asynccontextmanager
    async def _operation(self, name: str, **fields: object) -> AsyncIterator[None]:
        try:
            yield
        except LedgerError as exc:
            obs_metrics.inc_ledger_error(name, exc.reason)
            logger.info("ledger operation rejected", extra={"operation": name, "reason": exc.reason, **fields})
            raise

    async def _publish(self, events: List[LedgerEvent]) -> None:
        await notifications.publish_all(self._notifications, events)

    # ------------------------------------------------------------------ connections

    async def create_connection(
        self,
        caller: AuthenticatedUser,
        from_user_id: str,
        to_user_id: str,
        connection_type: ConnectionType | str = ConnectionType.QR_SCAN,
    ) -> ConnectionResult:
        from_user_id, to_user_id = str(from_user_id), str(to_user_id)
        events: List[LedgerEvent] = []
        async with self._operation(
            "create_connection", from_user_id=from_user_id, to_user_id=to_user_id, connection_type=str(connection_type)
        ):
            ctype = _coerce_connection_type(connection_type)
            if from_user_id == to_user_id:
                raise SelfConnection()
            if caller.id != from_user_id:
                raise Unauthorized()
            if not await rate_limit.allow("connect", caller.id, limit=self._connect_per_minute, window_seconds=60):
                obs_metrics.inc_ledger_error("create_connection", "rate_limited")
                raise ConnectRateLimitExceeded()

            async with self._repository.unit_of_work() as uow:
                users = await uow.lock_users([from_user_id, to_user_id])
                if await uow.connection_exists(from_user_id, to_user_id):
                    raise DuplicateConnection()
                if from_user_id not in users or to_user_id not in users:
                    raise UserNotFound()
                initiator, recipient = users[from_user_id], users[to_user_id]

                base = CONNECTION_POINTS[ctype]
                awards = {
                    user.id: base + (FIRST_CONNECTION_BONUS if user.total_connections == 0 else 0)
                    for user in (initiator, recipient)
                }
                forward = await uow.insert_connection(
                    initiator.id,
                    recipient.id,
                    ctype,
                    awards[initiator.id],
                    {
                        "from_user_name": initiator.label,
                        "to_user_name": recipient.label,
                        "initiator_id": initiator.id,
                    },
                )
                backward = await uow.insert_connection(
                    recipient.id,
                    initiator.id,
                    ctype,
                    awards[recipient.id],
                    {
                        "from_user_name": recipient.label,
                        "to_user_name": initiator.label,
                        "initiator_id": initiator.id,
                    },
                )

                sides = {}
                for user, other, row in ((initiator, recipient, forward), (recipient, initiator, backward)):
                    count = await uow.increment_connections(user.id)
                    await self._points.credit(
                        uow,
                        user.id,
                        awards[user.id],
                        TransactionReason.CONNECTION,
                        f"Connected with {other.label}",
                        reference_id=row.id,
                        metadata={"connection_type": ctype.value, "other_user_id": other.id},
                    )
                    scanned = user is initiator and ctype is ConnectionType.QR_SCAN
                    await self._deriver.award_xp(
                        uow,
                        user.id,
                        awards[user.id],
                        events,
                        connections_delta=1,
                        qr_scans_delta=1 if scanned else 0,
                    )
                    await self._deriver.evaluate(
                        uow,
                        user.id,
                        events,
                        previous_connections=user.total_connections,
                        current_connections=count,
                    )
                    sides[user.id] = SideResult(
                        user_id=user.id,
                        points_awarded=awards[user.id],
                        new_balance=await self._points.balance(uow, user.id),
                        total_connections=count,
                    )
                    events.append(
                        LedgerEvent(
                            kind="connection_created",
                            user_id=user.id,
                            data={
                                "connection_id": row.id,
                                "other_user_id": other.id,
                                "points_awarded": awards[user.id],
                                "new_balance": sides[user.id].new_balance,
                            },
                        )
                    )

        obs_metrics.inc_connection_created(ctype.value)
        logger.info(
            "connection created",
            extra={
                "connection_id": forward.id,
                "from_user_id": from_user_id,
                "to_user_id": to_user_id,
                "connection_type": ctype.value,
                "points_awarded": awards[from_user_id],
            },
        )
        await self._publish(events)
        return ConnectionResult(
            connection=forward,
            points_awarded=awards[from_user_id],
            initiator=sides[from_user_id],
            recipient=sides[to_user_id],
        )

    async def get_user_connections(
        self,
        user_id: str,
        caller_id: Optional[str] = None,
        *,
        limit: int = 50,
    ) -> List[ConnectedUser]:
        """Connections of `user_id`; private profiles are hidden from everyone but the owner."""
        user_id = str(user_id)
        async with self._repository.unit_of_work() as uow:
            rows = await uow.list_connections(user_id, limit=max(1, limit))
        if caller_id is not None and str(caller_id) == user_id:
            return rows
        return [row for row in rows if row.is_public]

    async def get_scan_history(
        self,
        user_id: str,
        caller_id: Optional[str] = None,
        *,
        limit: int = 20,
        offset: int = 0,
    ) -> List[ConnectedUser]:
        """QR scans `user_id` initiated, newest first, with the same privacy rule as connections."""
        user_id = str(user_id)
        async with self._operation("get_scan_history", target_user_id=user_id):
            async with self._repository.unit_of_work() as uow:
                if await uow.get_user(user_id) is None:
                    raise UserNotFound()
                rows = await uow.list_connections(
                    user_id,
                    limit=max(1, min(limit, 200)),
                    offset=max(0, offset),
                    connection_type=ConnectionType.QR_SCAN,
                    initiated_only=True,
                )
        if caller_id is not None and str(caller_id) == user_id:
            return rows
        return [row for row in rows if row.is_public]

    # ------------------------------------------------------------------ balances

    async def get_user_stats(self, user_id: str) -> UserStats:
        user_id = str(user_id)
        async with self._operation("get_user_stats", target_user_id=user_id):
            since = datetime.now(timezone.utc) - STATS_WINDOW
            async with self._repository.unit_of_work() as uow:
                user = await uow.get_user(user_id)
                if user is None:
                    raise UserNotFound()
                return UserStats(
                    user_id=user.id,
                    a_points=user.a_points,
                    total_connections=user.total_connections,
                    rank=await uow.rank_of(user),
                    points_this_week=await uow.sum_positive_since(user_id, since),
                    connections_this_week=await uow.count_connections_since(user_id, since),
                    recent_transactions=await uow.list_transactions(user_id, limit=RECENT_TRANSACTIONS),
                    achievements=await uow.list_achievements(user_id),
                    level=await uow.get_level_state(user_id) or LevelState(user_id=user_id),
                )

    async def get_leaderboard(self, limit: int = DEFAULT_LEADERBOARD_LIMIT) -> List[LeaderboardEntry]:
        limit = max(1, min(int(limit), MAX_LEADERBOARD_LIMIT))
        async with self._repository.unit_of_work() as uow:
            return await self._points.leaderboard(uow, limit)

    async def get_xp_leaderboard(self, limit: int = 50, offset: int = 0) -> List[XPLeaderboardEntry]:
        limit = max(1, min(int(limit), MAX_LEADERBOARD_LIMIT))
        offset = max(0, int(offset))
        async with self._repository.unit_of_work() as uow:
            rows = await uow.top_xp(limit, offset)
        return [
            XPLeaderboardEntry(
                rank=offset + position,
                user_id=user.id,
                username=user.username,
                display_name=user.display_name,
                total_xp=state.total_xp,
                current_level=state.current_level,
                level_name=state.level_name,
            )
            for position, (user, state) in enumerate(rows, start=1)
        ]

    async def get_rank(self, user_id: str) -> int:
        async with self._operation("get_rank", target_user_id=str(user_id)):
            async with self._repository.unit_of_work() as uow:
                return await self._points.rank(uow, str(user_id))

    async def audit_balance(self, user_id: str) -> tuple[int, int]:
        """Return (stored balance, sum of transaction deltas); equal for a healthy ledger."""
        async with self._operation("audit_balance", target_user_id=str(user_id)):
            async with self._repository.unit_of_work() as uow:
                balance = await self._points.balance(uow, str(user_id))
                return balance, await uow.sum_transactions(str(user_id))

    async def list_transactions(
        self,
        caller: AuthenticatedUser,
        user_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> List[PointsTransaction]:
        user_id = str(user_id)
        async with self._operation("list_transactions", target_user_id=user_id, caller_id=caller.id):
            if caller.id != user_id and not caller.is_admin:
                raise Unauthorized()
            async with self._repository.unit_of_work() as uow:
                return await uow.list_transactions(user_id, limit=max(1, min(limit, 200)), offset=max(0, offset))

    async def award_points(
        self,
        caller: AuthenticatedUser,
        user_id: str,
        amount: int,
        description: str,
        reference_id: Optional[str] = None,
        *,
        reason: TransactionReason | str = TransactionReason.ADMIN,
    ) -> AwardResult:
        """Admin adjustment booked under `reason` (admin, daily_bonus or qr_scan).

        Negative amounts are floored so the balance stops at zero.
        """
        user_id = str(user_id)
        events: List[LedgerEvent] = []
        async with self._operation(
            "award_points", target_user_id=user_id, amount=amount, admin_id=caller.id, award_reason=str(reason)
        ):
            if not caller.is_admin:
                raise Unauthorized()
            try:
                reason = TransactionReason(reason)
            except ValueError:
                raise LedgerValidationError("invalid_award_reason") from None
            if reason not in ADMIN_AWARD_REASONS:
                raise LedgerValidationError("invalid_award_reason")
            if not isinstance(amount, int) or isinstance(amount, bool) or amount == 0:
                raise InvalidAmount()
            if abs(amount) > self._max_admin_award:
                raise AwardOverCap()
            metadata = {"admin_id": caller.id, "requested": amount}
            async with self._repository.unit_of_work() as uow:
                users = await uow.lock_users([user_id])
                user = users.get(user_id)
                if user is None:
                    raise UserNotFound()
                if amount > 0:
                    balance, transaction = await self._points.credit(
                        uow, user_id, amount, reason, description, reference_id, metadata
                    )
                    # every positive award counts toward xp, whatever it was booked under
                    applied = amount
                    await self._deriver.award_xp(uow, user_id, amount, events)
                    await self._deriver.evaluate(
                        uow,
                        user_id,
                        events,
                        previous_connections=user.total_connections,
                        current_connections=user.total_connections,
                    )
                    balance = await self._points.balance(uow, user_id)
                else:
                    applied = -min(user.a_points, -amount)
                    if applied:
                        balance, transaction = await self._points.debit(
                            uow, user_id, -applied, reason, description, reference_id, metadata
                        )
                    else:
                        # nothing left to take; keep the adjustment on record
                        balance = user.a_points
                        transaction = await uow.insert_transaction(
                            user_id, 0, reason, description, reference_id, metadata
                        )
        logger.info(
            "admin award applied",
            extra={
                "target_user_id": user_id,
                "requested": amount,
                "applied": applied,
                "admin_id": caller.id,
                "award_reason": reason.value,
            },
        )
        await self._publish(events)
        return AwardResult(
            user_id=user_id,
            points_change=applied,
            new_balance=balance,
            transaction_id=transaction.id,
        )

    # ------------------------------------------------------------------ swaps

    async def swap_points(self, caller: AuthenticatedUser, user_id: str, points_to_swap: int) -> SwapResult:
        user_id = str(user_id)
        async with self._operation("swap_points", target_user_id=user_id, amount=points_to_swap):
            if caller.id != user_id:
                raise Unauthorized()
            if not isinstance(points_to_swap, int) or points_to_swap < self._min_swap_points:
                raise BelowMinimum()
            token_amount = points_to_swap / self._exchange_rate
            async with self._repository.unit_of_work() as uow:
                users = await uow.lock_users([user_id])
                user = users.get(user_id)
                if user is None:
                    raise UserNotFound()
                if user.a_points < points_to_swap:
                    raise InsufficientPoints()
                swap = await uow.insert_swap(user_id, points_to_swap, token_amount, user.wallet_address)
                remaining, _ = await self._points.debit(
                    uow,
                    user_id,
                    points_to_swap,
                    TransactionReason.TOKEN_SWAP,
                    f"Swapped {points_to_swap} A-Points for {token_amount:g} tokens",
                    reference_id=swap.id,
                    metadata={"token_amount": token_amount, "exchange_rate": self._exchange_rate},
                )
        obs_metrics.inc_swap_requested()
        logger.info(
            "token swap recorded",
            extra={"target_user_id": user_id, "swap_id": swap.id, "points": points_to_swap, "token_amount": token_amount},
        )
        return SwapResult(
            swap=swap,
            points_swapped=points_to_swap,
            token_amount=token_amount,
            exchange_rate=self._exchange_rate,
            remaining_points=remaining,
        )

    async def get_swap_history(self, caller: AuthenticatedUser, user_id: str, *, limit: int = 50) -> List[TokenSwap]:
        user_id = str(user_id)
        async with self._operation("get_swap_history", target_user_id=user_id, caller_id=caller.id):
            if caller.id != user_id and not caller.is_admin:
                raise Unauthorized()
            async with self._repository.unit_of_work() as uow:
                return await uow.list_swaps(user_id, limit=max(1, min(limit, 200)))

    # ------------------------------------------------------------------ progression

    async def get_level(self, user_id: str) -> LevelState:
        user_id = str(user_id)
        async with self._operation("get_level", target_user_id=user_id):
            async with self._repository.unit_of_work() as uow:
                if await uow.get_user(user_id) is None:
                    raise UserNotFound()
                return await uow.get_level_state(user_id) or LevelState(user_id=user_id)

    async def list_achievements(self, user_id: str) -> List[Achievement]:
        user_id = str(user_id)
        async with self._operation("list_achievements", target_user_id=user_id):
            async with self._repository.unit_of_work() as uow:
                if await uow.get_user(user_id) is None:
                    raise UserNotFound()
                return await uow.list_achievements(user_id)

    async def record_profile_view(self, owner_id: str) -> LevelState:
        """Count a non-owner view of `owner_id`'s profile."""
        events: List[LedgerEvent] = []
        async with self._repository.unit_of_work() as uow:
            if await uow.get_user(str(owner_id)) is None:
                raise UserNotFound()
            state = await self._deriver.award_xp(uow, str(owner_id), 0, events, profile_views_delta=1)
        obs_metrics.inc_profile_view()
        return state

