"""Balance mutations, each paired with an append-only transaction row."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

from app.domain.ledger.exceptions import InsufficientPoints, InvalidAmount, UserNotFound
from app.domain.ledger.models import LeaderboardEntry, PointsTransaction, TransactionReason
from app.domain.ledger.repository import LedgerUnitOfWork
from app.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class PointsLedger:
    """Credits, debits and ordering of A-Point balances.

    Every method runs against a caller supplied unit of work so that several
    mutations commit or roll back together.
    """

    async def credit(
        self,
        uow: LedgerUnitOfWork,
        user_id: str,
        amount: int,
        reason: TransactionReason,
        description: str,
        reference_id: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> tuple[int, PointsTransaction]:
        """Atomically add `amount` and log it. Returns (new balance, transaction)."""
        if not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount()
        if await uow.get_user(user_id) is None:
            raise UserNotFound()
        balance = await uow.add_points(user_id, amount)
        transaction = await uow.insert_transaction(
            user_id, amount, reason, description, reference_id=reference_id, metadata=metadata
        )
        obs_metrics.inc_points_credited(reason.value, amount)
        return balance, transaction

    async def debit(
        self,
        uow: LedgerUnitOfWork,
        user_id: str,
        amount: int,
        reason: TransactionReason,
        description: str,
        reference_id: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> tuple[int, PointsTransaction]:
        """Conditionally subtract `amount`; never lets the balance go negative."""
        if not isinstance(amount, int) or amount <= 0:
            raise InvalidAmount()
        if await uow.get_user(user_id) is None:
            raise UserNotFound()
        balance = await uow.subtract_points(user_id, amount)
        if balance is None:
            logger.info("debit rejected", extra={"target_user_id": user_id, "amount": amount, "reason": reason.value})
            raise InsufficientPoints()
        transaction = await uow.insert_transaction(
            user_id, -amount, reason, description, reference_id=reference_id, metadata=metadata
        )
        obs_metrics.inc_points_debited(reason.value, amount)
        return balance, transaction

    async def balance(self, uow: LedgerUnitOfWork, user_id: str) -> int:
        user = await uow.get_user(user_id)
        if user is None:
            raise UserNotFound()
        return user.a_points

    async def rank(self, uow: LedgerUnitOfWork, user_id: str) -> int:
        user = await uow.get_user(user_id)
        if user is None:
            raise UserNotFound()
        return await uow.rank_of(user)

    async def leaderboard(self, uow: LedgerUnitOfWork, limit: int) -> List[LeaderboardEntry]:
        users = await uow.top_users(max(0, limit))
        return [
            LeaderboardEntry(
                rank=position,
                user_id=user.id,
                username=user.username,
                display_name=user.display_name,
                a_points=user.a_points,
                total_connections=user.total_connections,
            )
            for position, user in enumerate(users, start=1)
        ]
