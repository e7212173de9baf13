"""Pydantic schemas for the points API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.domain.ledger.models import AchievementType, ConnectionType, SwapStatus, TransactionReason


class _FromDomain(BaseModel):
	model_config = ConfigDict(from_attributes=True)


class ConnectionCreateRequest(BaseModel):
	from_user_id: str = Field(..., min_length=1, description="Initiator; must be the caller")
	to_user_id: str = Field(..., min_length=1, description="Scanned or selected user")
	connection_type: ConnectionType = Field(default=ConnectionType.QR_SCAN)


class ConnectionSchema(_FromDomain):
	id: str
	from_user_id: str
	to_user_id: str
	connection_type: ConnectionType
	points_awarded: int
	created_at: datetime
	metadata: Dict[str, Any] = Field(default_factory=dict)


class SideResultSchema(_FromDomain):
	user_id: str
	points_awarded: int
	new_balance: int
	total_connections: int


class ConnectionCreateResponse(_FromDomain):
	connection: ConnectionSchema
	points_awarded: int
	initiator: SideResultSchema
	recipient: SideResultSchema


class ConnectedUserSchema(BaseModel):
	connection_id: str
	user_id: str
	username: Optional[str] = None
	display_name: Optional[str] = None
	connection_type: ConnectionType
	points_awarded: int
	created_at: datetime


class TransactionSchema(_FromDomain):
	id: str
	user_id: str
	points_change: int
	reason: TransactionReason
	description: str
	reference_id: Optional[str] = None
	metadata: Dict[str, Any] = Field(default_factory=dict)
	created_at: datetime


class AchievementSchema(_FromDomain):
	id: str
	achievement_type: AchievementType
	name: str
	description: str
	points_awarded: int
	unlocked_at: datetime


class LevelSchema(_FromDomain):
	user_id: str
	total_xp: int
	current_level: int
	level_name: str
	next_level_xp: int
	connections_made: int
	qr_scans_performed: int
	profile_views: int
	updated_at: Optional[datetime] = None


class UserStatsSchema(_FromDomain):
	user_id: str
	a_points: int
	total_connections: int
	rank: int
	points_this_week: int
	connections_this_week: int
	recent_transactions: List[TransactionSchema]
	achievements: List[AchievementSchema]
	level: LevelSchema


class LeaderboardEntrySchema(_FromDomain):
	rank: int
	user_id: str
	username: Optional[str] = None
	display_name: Optional[str] = None
	a_points: int
	total_connections: int


class XPLeaderboardEntrySchema(_FromDomain):
	rank: int
	user_id: str
	username: Optional[str] = None
	display_name: Optional[str] = None
	total_xp: int
	current_level: int
	level_name: str


class AdminAwardRequest(BaseModel):
	user_id: str = Field(..., min_length=1)
	amount: int = Field(..., description="Signed adjustment; negatives stop at a zero balance")
	reason: TransactionReason = Field(
		default=TransactionReason.ADMIN, description="One of admin, daily_bonus or qr_scan"
	)
	description: str = Field(..., min_length=1, max_length=500)
	reference_id: Optional[str] = None


class AdminAwardResponse(_FromDomain):
	user_id: str
	points_change: int
	new_balance: int
	transaction_id: str


class SwapRequest(BaseModel):
	user_id: str = Field(..., min_length=1)
	points_to_swap: int


class TokenSwapSchema(_FromDomain):
	id: str
	user_id: str
	points_swapped: int
	token_amount: float
	wallet_address: Optional[str] = None
	status: SwapStatus
	created_at: datetime


class SwapResponse(_FromDomain):
	swap: TokenSwapSchema
	points_swapped: int
	token_amount: float
	exchange_rate: int
	remaining_points: int
