"""Profile visibility and public profile lookup."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from app.api.auth import get_identity_service
from app.domain.identity import schemas
from app.domain.identity.service import IdentityService, IdentityServiceError
from app.infra.auth import AuthenticatedUser, get_current_user, get_optional_user

router = APIRouter(prefix="/profile", tags=["profile"])


@router.patch("/visibility", response_model=schemas.MeOut)
async def update_visibility(
	payload: schemas.VisibilityRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: IdentityService = Depends(get_identity_service),
) -> schemas.MeOut:
	try:
		return await service.set_visibility(auth_user.id, payload.is_public)
	except IdentityServiceError as exc:
		raise HTTPException(status_code=exc.status_code, detail=exc.reason) from None


@router.get("/{username}", response_model=schemas.ProfileOut)
async def public_profile(
	username: str,
	auth_user: Optional[AuthenticatedUser] = Depends(get_optional_user),
	service: IdentityService = Depends(get_identity_service),
) -> schemas.ProfileOut:
	try:
		return await service.get_profile(username, auth_user.id if auth_user else None)
	except IdentityServiceError as exc:
		raise HTTPException(status_code=exc.status_code, detail=exc.reason) from None
