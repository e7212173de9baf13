"""Domain models for the points and connection ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class ConnectionType(str, Enum):
    QR_SCAN = "qr_scan"
    MANUAL = "manual"
    EVENT = "event"


class TransactionReason(str, Enum):
    CONNECTION = "connection"
    DAILY_BONUS = "daily_bonus"
    ACHIEVEMENT = "achievement"
    ADMIN = "admin"
    TOKEN_SWAP = "token_swap"
    QR_SCAN = "qr_scan"


class AchievementType(str, Enum):
    FIRST_CONNECTION = "first_connection"
    NETWORKER = "networker"
    INFLUENCER = "influencer"


class SwapStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Base award per connection type
CONNECTION_POINTS: Mapping[ConnectionType, int] = {
    ConnectionType.MANUAL: 10,
    ConnectionType.EVENT: 10,
    ConnectionType.QR_SCAN: 15,
}
FIRST_CONNECTION_BONUS = 25
# Reasons an admin award may be booked under; the rest belong to their own flows
ADMIN_AWARD_REASONS = frozenset(
    {TransactionReason.ADMIN, TransactionReason.DAILY_BONUS, TransactionReason.QR_SCAN}
)
NETWORKER_THRESHOLD = 10
INFLUENCER_LEVEL = 20


@dataclass(frozen=True, slots=True)
class AchievementDefinition:
    type: AchievementType
    name: str
    description: str
    points: int


ACHIEVEMENTS: Mapping[AchievementType, AchievementDefinition] = {
    AchievementType.FIRST_CONNECTION: AchievementDefinition(
        AchievementType.FIRST_CONNECTION, "First Connection", "Made your first connection", 25
    ),
    AchievementType.NETWORKER: AchievementDefinition(
        AchievementType.NETWORKER, "Networker", "Made 10 connections", 50
    ),
    AchievementType.INFLUENCER: AchievementDefinition(
        AchievementType.INFLUENCER, "Influencer", "Reached level 20", 100
    ),
}


@dataclass(slots=True)
class User:
    id: str
    created_at: datetime
    updated_at: datetime
    wallet_address: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
    display_name: Optional[str] = None
    is_public: bool = True
    password_hash: Optional[str] = None
    a_points: int = 0
    total_connections: int = 0

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "User":
        return cls(
            id=str(record["id"]),
            created_at=record["created_at"],
            updated_at=record["updated_at"],
            wallet_address=record.get("wallet_address"),
            email=record.get("email"),
            username=record.get("username"),
            display_name=record.get("display_name"),
            is_public=bool(record.get("is_public", True)),
            password_hash=record.get("password_hash"),
            a_points=int(record.get("a_points") or 0),
            total_connections=int(record.get("total_connections") or 0),
        )

    @property
    def label(self) -> str:
        """Name captured into connection metadata."""
        return self.display_name or self.username or "Anonymous"


@dataclass(slots=True)
class Connection:
    id: str
    from_user_id: str
    to_user_id: str
    connection_type: ConnectionType
    points_awarded: int
    created_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Connection":
        return cls(
            id=str(record["id"]),
            from_user_id=str(record["from_user_id"]),
            to_user_id=str(record["to_user_id"]),
            connection_type=ConnectionType(record["connection_type"]),
            points_awarded=int(record["points_awarded"]),
            created_at=record["created_at"],
            metadata=dict(record.get("metadata") or {}),
        )


@dataclass(slots=True)
class ConnectedUser:
    """A connection row joined with the profile it points at."""

    connection: Connection
    user_id: str
    username: Optional[str]
    display_name: Optional[str]
    is_public: bool


@dataclass(slots=True)
class PointsTransaction:
    id: str
    user_id: str
    points_change: int
    reason: TransactionReason
    description: str
    created_at: datetime
    reference_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "PointsTransaction":
        reference = record.get("reference_id")
        return cls(
            id=str(record["id"]),
            user_id=str(record["user_id"]),
            points_change=int(record["points_change"]),
            reason=TransactionReason(record["reason"]),
            description=record.get("description") or "",
            created_at=record["created_at"],
            reference_id=str(reference) if reference is not None else None,
            metadata=dict(record.get("metadata") or {}),
        )


@dataclass(slots=True)
class Achievement:
    id: str
    user_id: str
    achievement_type: AchievementType
    name: str
    description: str
    points_awarded: int
    unlocked_at: datetime

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Achievement":
        return cls(
            id=str(record["id"]),
            user_id=str(record["user_id"]),
            achievement_type=AchievementType(record["achievement_type"]),
            name=record["name"],
            description=record.get("description") or "",
            points_awarded=int(record["points_awarded"]),
            unlocked_at=record["unlocked_at"],
        )


@dataclass(slots=True)
class LevelState:
    user_id: str
    total_xp: int = 0
    current_level: int = 1
    level_name: str = "Newcomer"
    next_level_xp: int = 120
    connections_made: int = 0
    qr_scans_performed: int = 0
    profile_views: int = 0
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "LevelState":
        return cls(
            user_id=str(record["user_id"]),
            total_xp=int(record["total_xp"]),
            current_level=int(record["current_level"]),
            level_name=record["level_name"],
            next_level_xp=int(record["next_level_xp"]),
            connections_made=int(record["connections_made"]),
            qr_scans_performed=int(record["qr_scans_performed"]),
            profile_views=int(record["profile_views"]),
            updated_at=record.get("updated_at"),
        )


@dataclass(slots=True)
class TokenSwap:
    id: str
    user_id: str
    points_swapped: int
    token_amount: float
    status: SwapStatus
    created_at: datetime
    wallet_address: Optional[str] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "TokenSwap":
        return cls(
            id=str(record["id"]),
            user_id=str(record["user_id"]),
            points_swapped=int(record["points_swapped"]),
            token_amount=float(record["token_amount"]),
            status=SwapStatus(record["status"]),
            created_at=record["created_at"],
            wallet_address=record.get("wallet_address"),
        )


@dataclass(slots=True)
class LedgerEvent:
    """Notification produced inside a unit of work and published after commit."""

    kind: str
    user_id: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class SideResult:
    user_id: str
    points_awarded: int
    new_balance: int
    total_connections: int


@dataclass(slots=True)
class ConnectionResult:
    connection: Connection
    points_awarded: int
    initiator: SideResult
    recipient: SideResult


@dataclass(slots=True)
class AwardResult:
    user_id: str
    points_change: int
    new_balance: int
    transaction_id: str


@dataclass(slots=True)
class SwapResult:
    swap: TokenSwap
    points_swapped: int
    token_amount: float
    exchange_rate: int
    remaining_points: int


@dataclass(slots=True)
class UserStats:
    user_id: str
    a_points: int
    total_connections: int
    rank: int
    points_this_week: int
    connections_this_week: int
    recent_transactions: list[PointsTransaction]
    achievements: list[Achievement]
    level: LevelState


@dataclass(slots=True)
class LeaderboardEntry:
    rank: int
    user_id: str
    username: Optional[str]
    display_name: Optional[str]
    a_points: int
    total_connections: int


@dataclass(slots=True)
class XPLeaderboardEntry:
    rank: int
    user_id: str
    username: Optional[str]
    display_name: Optional[str]
    total_xp: int
    current_level: int
    level_name: str
