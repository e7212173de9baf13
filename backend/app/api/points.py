"""FastAPI routes for connections, A-Points, levels and token swaps."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.domain.ledger.exceptions import (
	InsufficientPoints,
	LedgerConflict,
	LedgerError,
	LedgerForbidden,
	LedgerIntegrityError,
	LedgerNotFound,
	LedgerValidationError,
)
from app.domain.ledger.models import ConnectedUser
from app.domain.ledger.schemas import (
	AchievementSchema,
	AdminAwardRequest,
	AdminAwardResponse,
	ConnectedUserSchema,
	ConnectionCreateRequest,
	ConnectionCreateResponse,
	LeaderboardEntrySchema,
	LevelSchema,
	SwapRequest,
	SwapResponse,
	TokenSwapSchema,
	TransactionSchema,
	UserStatsSchema,
	XPLeaderboardEntrySchema,
)
from app.domain.ledger.service import DEFAULT_LEADERBOARD_LIMIT, MAX_LEADERBOARD_LIMIT, LedgerService
from app.infra.auth import AuthenticatedUser, get_current_user, get_optional_user
from app.infra.rate_limit import RateLimitExceeded

router = APIRouter(prefix="/points", tags=["points"])


def get_ledger_service(request: Request) -> LedgerService:
	return request.app.state.ledger_service


def _map_error(exc: Exception) -> HTTPException:
	if isinstance(exc, RateLimitExceeded):
		return HTTPException(
			status.HTTP_429_TOO_MANY_REQUESTS,
			detail=exc.reason,
			headers={"Retry-After": str(exc.retry_after)},
		)
	if isinstance(exc, InsufficientPoints):
		return HTTPException(status.HTTP_402_PAYMENT_REQUIRED, detail=exc.reason)
	if isinstance(exc, LedgerNotFound):
		return HTTPException(status.HTTP_404_NOT_FOUND, detail=exc.reason)
	if isinstance(exc, LedgerConflict):
		return HTTPException(status.HTTP_409_CONFLICT, detail=exc.reason)
	if isinstance(exc, LedgerForbidden):
		return HTTPException(status.HTTP_403_FORBIDDEN, detail=exc.reason)
	if isinstance(exc, LedgerIntegrityError):
		return HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.reason)
	if isinstance(exc, LedgerValidationError):
		return HTTPException(status.HTTP_400_BAD_REQUEST, detail=exc.reason)
	return HTTPException(status.HTTP_400_BAD_REQUEST, detail=getattr(exc, "reason", "bad_request"))


def _connected_user(row: ConnectedUser) -> ConnectedUserSchema:
	return ConnectedUserSchema(
		connection_id=row.connection.id,
		user_id=row.user_id,
		username=row.username,
		display_name=row.display_name,
		connection_type=row.connection.connection_type,
		points_awarded=row.connection.points_awarded,
		created_at=row.connection.created_at,
	)


@router.post("/connections", response_model=ConnectionCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_connection(
	payload: ConnectionCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: LedgerService = Depends(get_ledger_service),
) -> ConnectionCreateResponse:
	try:
		result = await service.create_connection(
			auth_user, payload.from_user_id, payload.to_user_id, payload.connection_type
		)
	except (LedgerError, RateLimitExceeded) as exc:
		raise _map_error(exc) from None
	return ConnectionCreateResponse.model_validate(result)


@router.get("/leaderboard", response_model=List[LeaderboardEntrySchema])
async def leaderboard(
	limit: int = Query(default=DEFAULT_LEADERBOARD_LIMIT, ge=1, le=MAX_LEADERBOARD_LIMIT),
	service: LedgerService = Depends(get_ledger_service),
) -> List[LeaderboardEntrySchema]:
	entries = await service.get_leaderboard(limit)
	return [LeaderboardEntrySchema.model_validate(entry) for entry in entries]


@router.get("/xp-leaderboard", response_model=List[XPLeaderboardEntrySchema])
async def xp_leaderboard(
	limit: int = Query(default=50, ge=1, le=MAX_LEADERBOARD_LIMIT),
	offset: int = Query(default=0, ge=0),
	service: LedgerService = Depends(get_ledger_service),
) -> List[XPLeaderboardEntrySchema]:
	entries = await service.get_xp_leaderboard(limit, offset)
	return [XPLeaderboardEntrySchema.model_validate(entry) for entry in entries]


@router.get("/users/{user_id}/stats", response_model=UserStatsSchema)
async def user_stats(user_id: str, service: LedgerService = Depends(get_ledger_service)) -> UserStatsSchema:
	try:
		stats = await service.get_user_stats(user_id)
	except LedgerError as exc:
		raise _map_error(exc) from None
	return UserStatsSchema.model_validate(stats)


@router.get("/users/{user_id}/connections", response_model=List[ConnectedUserSchema])
async def user_connections(
	user_id: str,
	limit: int = Query(default=50, ge=1, le=200),
	auth_user: Optional[AuthenticatedUser] = Depends(get_optional_user),
	service: LedgerService = Depends(get_ledger_service),
) -> List[ConnectedUserSchema]:
	rows = await service.get_user_connections(user_id, auth_user.id if auth_user else None, limit=limit)
	return [_connected_user(row) for row in rows]


@router.get("/users/{user_id}/scans", response_model=List[ConnectedUserSchema])
async def user_scans(
	user_id: str,
	limit: int = Query(default=20, ge=1, le=200),
	offset: int = Query(default=0, ge=0),
	auth_user: Optional[AuthenticatedUser] = Depends(get_optional_user),
	service: LedgerService = Depends(get_ledger_service),
) -> List[ConnectedUserSchema]:
	try:
		rows = await service.get_scan_history(
			user_id, auth_user.id if auth_user else None, limit=limit, offset=offset
		)
	except LedgerError as exc:
		raise _map_error(exc) from None
	return [_connected_user(row) for row in rows]


@router.get("/users/{user_id}/level", response_model=LevelSchema)
async def user_level(user_id: str, service: LedgerService = Depends(get_ledger_service)) -> LevelSchema:
	try:
		return LevelSchema.model_validate(await service.get_level(user_id))
	except LedgerError as exc:
		raise _map_error(exc) from None


@router.get("/users/{user_id}/achievements", response_model=List[AchievementSchema])
async def user_achievements(
	user_id: str,
	service: LedgerService = Depends(get_ledger_service),
) -> List[AchievementSchema]:
	try:
		achievements = await service.list_achievements(user_id)
	except LedgerError as exc:
		raise _map_error(exc) from None
	return [AchievementSchema.model_validate(item) for item in achievements]


@router.get("/users/{user_id}/transactions", response_model=List[TransactionSchema])
async def user_transactions(
	user_id: str,
	limit: int = Query(default=50, ge=1, le=200),
	offset: int = Query(default=0, ge=0),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: LedgerService = Depends(get_ledger_service),
) -> List[TransactionSchema]:
	try:
		rows = await service.list_transactions(auth_user, user_id, limit=limit, offset=offset)
	except LedgerError as exc:
		raise _map_error(exc) from None
	return [TransactionSchema.model_validate(row) for row in rows]


@router.post("/admin/award", response_model=AdminAwardResponse)
async def admin_award(
	payload: AdminAwardRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: LedgerService = Depends(get_ledger_service),
) -> AdminAwardResponse:
	try:
		result = await service.award_points(
			auth_user,
			payload.user_id,
			payload.amount,
			payload.description,
			payload.reference_id,
			reason=payload.reason,
		)
	except LedgerError as exc:
		raise _map_error(exc) from None
	return AdminAwardResponse.model_validate(result)


@router.post("/swaps", response_model=SwapResponse, status_code=status.HTTP_201_CREATED)
async def swap_points(
	payload: SwapRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: LedgerService = Depends(get_ledger_service),
) -> SwapResponse:
	try:
		result = await service.swap_points(auth_user, payload.user_id, payload.points_to_swap)
	except LedgerError as exc:
		raise _map_error(exc) from None
	return SwapResponse.model_validate(result)


@router.get("/users/{user_id}/swaps", response_model=List[TokenSwapSchema])
async def swap_history(
	user_id: str,
	limit: int = Query(default=50, ge=1, le=200),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: LedgerService = Depends(get_ledger_service),
) -> List[TokenSwapSchema]:
	try:
		swaps = await service.get_swap_history(auth_user, user_id, limit=limit)
	except LedgerError as exc:
		raise _map_error(exc) from None
	return [TokenSwapSchema.model_validate(swap) for swap in swaps]
