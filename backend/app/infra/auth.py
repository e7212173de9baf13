"""Authentication dependencies for FastAPI endpoints.

Bearer JWTs are required outside development. Dev environments additionally
accept `X-User-Id` / `X-User-Roles` headers for local tooling and tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.infra import jwt as jwt_helper
from app.obs import metrics as obs_metrics
from app.settings import settings

ADMIN_ROLE = "admin"


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	roles: Tuple[str, ...] = ()
	session_id: Optional[str] = None

	def has_role(self, role: str) -> bool:
		return role in self.roles

	@property
	def is_admin(self) -> bool:
		return self.has_role(ADMIN_ROLE) or settings.is_admin(self.id)


_bearer_scheme = HTTPBearer(auto_error=False)


def _parse_roles(claim: object) -> Tuple[str, ...]:
	if isinstance(claim, (list, tuple)):
		return tuple(str(r).strip() for r in claim if str(r).strip())
	if isinstance(claim, str):
		return tuple(part.strip() for part in claim.split(",") if part.strip())
	return ()


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode an access JWT into an AuthenticatedUser.

	Any decode failure surfaces as 401 `invalid_token`.
	"""
	try:
		payload = jwt_helper.decode_access(token)
	except Exception:
		obs_metrics.auth_failed("invalid_token")
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")

	sub = str(payload.get("sub") or "").strip()
	if not sub:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	session_id = payload.get("sid")
	return AuthenticatedUser(
		id=sub,
		roles=_parse_roles(payload.get("roles") or payload.get("role")),
		session_id=str(session_id).strip() if session_id is not None else None,
	)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_roles: Optional[str] = Header(default=None, alias="X-User-Roles"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=x_user_id.strip(), roles=_parse_roles(x_user_roles))

	obs_metrics.auth_failed("missing_token")
	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


async def get_optional_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_roles: Optional[str] = Header(default=None, alias="X-User-Roles"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> Optional[AuthenticatedUser]:
	"""Like get_current_user, but anonymous callers yield None instead of 401."""
	if credentials is None and not (settings.is_dev() and x_user_id):
		return None
	return await get_current_user(x_user_id=x_user_id, x_user_roles=x_user_roles, credentials=credentials)
