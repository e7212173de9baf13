"""Account registration, login and profile lookups."""

from __future__ import annotations

import logging
from typing import Optional
from uuid import uuid4

from app.domain.identity import policy, schemas
from app.domain.ledger.exceptions import LedgerConflict
from app.domain.ledger.models import User
from app.domain.ledger.repository import LedgerRepository
from app.domain.ledger.service import LedgerService
from app.infra import jwt as jwt_helper
from app.infra.auth import ADMIN_ROLE
from app.infra.password import check_needs_rehash, hash_password, verify_password
from app.obs import metrics as obs_metrics
from app.settings import settings

logger = logging.getLogger(__name__)


class IdentityServiceError(Exception):
	"""Raised for service-level issues with an HTTP status mapping."""

	def __init__(self, reason: str, *, status_code: int = 400):
		super().__init__(reason)
		self.reason = reason
		self.status_code = status_code


class LoginFailed(IdentityServiceError):
	def __init__(self, reason: str = "invalid_credentials") -> None:
		super().__init__(reason, status_code=401)


class IdentityConflict(IdentityServiceError):
	def __init__(self, reason: str) -> None:
		super().__init__(reason, status_code=409)


class ProfileNotFound(IdentityServiceError):
	def __init__(self) -> None:
		super().__init__("profile_not_found", status_code=404)


def _me(user: User) -> schemas.MeOut:
	return schemas.MeOut.model_validate(user)


class IdentityService:
	"""Email/password accounts stored in the ledger's `users` table."""

	def __init__(self, repository: LedgerRepository, ledger: LedgerService) -> None:
		self._repository = repository
		self._ledger = ledger

	def _issue(self, user: User) -> schemas.AuthResponse:
		roles = (ADMIN_ROLE,) if settings.is_admin(user.id) else ()
		token = jwt_helper.mint_access_token(user.id, str(uuid4()), roles=roles)
		return schemas.AuthResponse(
			access_token=token,
			expires_in=settings.access_ttl_minutes * 60,
			user=_me(user),
		)

	async def register(self, payload: schemas.RegisterRequest, *, ip_address: str = "") -> schemas.AuthResponse:
		email = policy.normalise_email(payload.email)
		username = policy.normalise_username(payload.username)
		wallet = policy.normalise_wallet(payload.wallet_address)
		try:
			policy.guard_username(username)
			policy.guard_wallet(wallet)
			policy.guard_password(payload.password)
			await policy.enforce_register_rate(ip_address)
		except policy.IdentityPolicyError as exc:
			obs_metrics.inc_identity_reject(exc.reason)
			raise

		display_name = (payload.display_name or "").strip() or username
		try:
			async with self._repository.unit_of_work() as uow:
				if await uow.find_user(email=email):
					raise IdentityConflict("email_taken")
				if username and await uow.find_user(username=username):
					raise IdentityConflict("username_taken")
				if wallet and await uow.find_user(wallet_address=wallet):
					raise IdentityConflict("wallet_address_taken")
				user = await uow.insert_user(
					email=email,
					username=username,
					display_name=display_name,
					wallet_address=wallet,
					password_hash=hash_password(payload.password),
				)
		except LedgerConflict as exc:
			# lost a race with a concurrent registration
			obs_metrics.inc_identity_reject(exc.reason)
			raise IdentityConflict(exc.reason) from exc
		except IdentityConflict as exc:
			obs_metrics.inc_identity_reject(exc.reason)
			raise

		obs_metrics.inc_identity_register()
		logger.info("account registered", extra={"target_user_id": user.id})
		return self._issue(user)

	async def login(self, payload: schemas.LoginRequest) -> schemas.AuthResponse:
		email = policy.normalise_email(payload.email)
		await policy.enforce_login_rate(email)
		async with self._repository.unit_of_work() as uow:
			user = await uow.find_user(email=email)
		# same reason for unknown email and bad password to prevent user enumeration
		if user is None or not user.password_hash:
			obs_metrics.inc_identity_reject("invalid_credentials")
			raise LoginFailed()
		if not verify_password(user.password_hash, payload.password):
			obs_metrics.inc_identity_reject("invalid_credentials")
			raise LoginFailed()
		if check_needs_rehash(user.password_hash):
			logger.info("password hash parameters outdated", extra={"target_user_id": user.id})
		obs_metrics.inc_identity_login()
		return self._issue(user)

	async def get_me(self, user_id: str) -> schemas.MeOut:
		async with self._repository.unit_of_work() as uow:
			user = await uow.get_user(user_id)
		if user is None:
			raise ProfileNotFound()
		return _me(user)

	async def set_visibility(self, user_id: str, is_public: bool) -> schemas.MeOut:
		async with self._repository.unit_of_work() as uow:
			user = await uow.set_visibility(user_id, is_public)
		if user is None:
			raise ProfileNotFound()
		logger.info("profile visibility changed", extra={"target_user_id": user_id, "is_public": is_public})
		return _me(user)

	async def get_profile(self, username: str, viewer_id: Optional[str] = None) -> schemas.ProfileOut:
		"""Public lookup by username. Private profiles are only visible to their owner."""
		handle = policy.normalise_username(username)
		if handle is None:
			raise ProfileNotFound()
		async with self._repository.unit_of_work() as uow:
			user = await uow.find_user(username=handle)
		if user is None:
			raise ProfileNotFound()
		is_owner = viewer_id is not None and str(viewer_id) == user.id
		if not user.is_public and not is_owner:
			raise ProfileNotFound()
		if not is_owner:
			await self._ledger.record_profile_view(user.id)
		return schemas.ProfileOut.model_validate(user)
