"""XP, level and achievement derivation."""

from __future__ import annotations

import logging
from typing import List, Optional

from app.domain.ledger import progression
from app.domain.ledger.models import (
    ACHIEVEMENTS,
    INFLUENCER_LEVEL,
    NETWORKER_THRESHOLD,
    AchievementType,
    LedgerEvent,
    LevelState,
    TransactionReason,
)
from app.domain.ledger.points import PointsLedger
from app.domain.ledger.repository import LedgerUnitOfWork
from app.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


def _qualifies(
    achievement: AchievementType,
    previous_connections: int,
    current_connections: int,
    level: int,
) -> bool:
    if achievement is AchievementType.FIRST_CONNECTION:
        return previous_connections == 0 and current_connections >= 1
    if achievement is AchievementType.NETWORKER:
        return previous_connections < NETWORKER_THRESHOLD <= current_connections
    if achievement is AchievementType.INFLUENCER:
        return level >= INFLUENCER_LEVEL
    return False


class AchievementDeriver:
    """Maintains LevelState and unlocks one-time achievements.

    XP is the running total of positive credits. Unlocks are idempotent: the
    storage layer refuses a second row per (user, achievement type) and no bonus
    is credited in that case.
    """

    def __init__(self, points: PointsLedger) -> None:
        self._points = points

    async def award_xp(
        self,
        uow: LedgerUnitOfWork,
        user_id: str,
        amount: int,
        events: List[LedgerEvent],
        *,
        connections_delta: int = 0,
        qr_scans_delta: int = 0,
        profile_views_delta: int = 0,
    ) -> LevelState:
        state = await uow.get_level_state(user_id, for_update=True) or LevelState(user_id=user_id)
        previous_level = state.current_level
        state.total_xp += max(0, amount)
        state.connections_made += connections_delta
        state.qr_scans_performed += qr_scans_delta
        state.profile_views += profile_views_delta
        # level never decreases, xp only grows
        state.current_level = max(previous_level, progression.level_for_xp(state.total_xp))
        state.level_name = progression.level_name(state.current_level)
        state.next_level_xp = progression.next_level_xp(state.current_level)
        state = await uow.save_level_state(state)
        if state.current_level > previous_level:
            obs_metrics.inc_level_up()
            events.append(
                LedgerEvent(
                    kind="level_up",
                    user_id=user_id,
                    data={"new_level": state.current_level, "level_name": state.level_name},
                )
            )
        return state

    async def evaluate(
        self,
        uow: LedgerUnitOfWork,
        user_id: str,
        events: List[LedgerEvent],
        *,
        previous_connections: int,
        current_connections: int,
    ) -> int:
        """Unlock everything the user now qualifies for. Returns bonus points credited."""
        credited = 0
        unlocked_any = True
        while unlocked_any:
            unlocked_any = False
            state = await uow.get_level_state(user_id)
            level = state.current_level if state else 1
            for achievement in AchievementType:
                if not _qualifies(achievement, previous_connections, current_connections, level):
                    continue
                bonus = await self._unlock(uow, user_id, achievement, events)
                if bonus is None:
                    continue
                credited += bonus
                unlocked_any = True
                # a bonus can lift the level and qualify a further unlock
                break
        return credited

    async def _unlock(
        self,
        uow: LedgerUnitOfWork,
        user_id: str,
        achievement: AchievementType,
        events: List[LedgerEvent],
    ) -> Optional[int]:
        definition = ACHIEVEMENTS[achievement]
        row = await uow.insert_achievement(user_id, definition)
        if row is None:
            return None
        await self._points.credit(
            uow,
            user_id,
            definition.points,
            TransactionReason.ACHIEVEMENT,
            f"Achievement unlocked: {definition.name}",
            reference_id=row.id,
            metadata={"achievement_type": achievement.value},
        )
        await self.award_xp(uow, user_id, definition.points, events)
        obs_metrics.inc_achievement_unlocked(achievement.value)
        logger.info(
            "achievement unlocked",
            extra={"target_user_id": user_id, "achievement_type": achievement.value, "bonus": definition.points},
        )
        events.append(
            LedgerEvent(
                kind="achievement_unlocked",
                user_id=user_id,
                data={
                    "achievement_type": achievement.value,
                    "name": definition.name,
                    "points_awarded": definition.points,
                },
            )
        )
        return definition.points
