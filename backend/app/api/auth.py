"""Registration, login and current-user endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.domain.identity import policy, schemas
from app.domain.identity.service import IdentityService, IdentityServiceError
from app.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["auth"])


def get_identity_service(request: Request) -> IdentityService:
	return request.app.state.identity_service


def _client_ip(request: Request) -> str:
	client = request.client
	return client.host if client else "unknown"


def _map_policy_error(exc: policy.IdentityPolicyError) -> HTTPException:
	if isinstance(exc, policy.IdentityRateLimitExceeded):
		return HTTPException(status.HTTP_429_TOO_MANY_REQUESTS, detail=exc.reason)
	return HTTPException(status.HTTP_400_BAD_REQUEST, detail=exc.reason)


def _map_service_error(exc: IdentityServiceError) -> HTTPException:
	return HTTPException(status_code=exc.status_code, detail=exc.reason)


@router.post("/auth/register", response_model=schemas.AuthResponse, status_code=status.HTTP_201_CREATED)
async def register(
	payload: schemas.RegisterRequest,
	request: Request,
	service: IdentityService = Depends(get_identity_service),
) -> schemas.AuthResponse:
	try:
		return await service.register(payload, ip_address=_client_ip(request))
	except policy.IdentityPolicyError as exc:
		raise _map_policy_error(exc) from None
	except IdentityServiceError as exc:
		raise _map_service_error(exc) from None


@router.post("/auth/login", response_model=schemas.AuthResponse)
async def login(
	payload: schemas.LoginRequest,
	service: IdentityService = Depends(get_identity_service),
) -> schemas.AuthResponse:
	try:
		return await service.login(payload)
	except policy.IdentityPolicyError as exc:
		raise _map_policy_error(exc) from None
	except IdentityServiceError as exc:
		raise _map_service_error(exc) from None


@router.get("/auth/me", response_model=schemas.MeOut)
async def me(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: IdentityService = Depends(get_identity_service),
) -> schemas.MeOut:
	try:
		return await service.get_me(auth_user.id)
	except IdentityServiceError as exc:
		raise _map_service_error(exc) from None
