"""Validation and rate-limit guards for identity flows."""

from __future__ import annotations

import re
from typing import Optional

from app.infra import rate_limit

USERNAME_REGEX = re.compile(r"^[a-z0-9_]{3,30}$")
WALLET_REGEX = re.compile(r"^0x[0-9a-f]{40}$")
BLOCKED_USERNAMES = {"admin", "support", "metabento", "system"}
PASSWORD_MIN_LEN = 8
DISPLAY_MAX_LEN = 80

REGISTER_PER_HOUR = 20
LOGIN_PER_MINUTE = 12


class IdentityPolicyError(ValueError):
	"""Raised when a policy constraint is violated."""

	def __init__(self, reason: str):
		super().__init__(reason)
		self.reason = reason


class IdentityRateLimitExceeded(IdentityPolicyError):
	"""Raised when a rate limit bucket is exhausted."""


class UsernameFormatError(IdentityPolicyError):
	"""Raised when a username is malformed or reserved."""


class WalletFormatError(IdentityPolicyError):
	"""Raised when a wallet address is not a 20-byte hex address."""


class PasswordTooWeak(IdentityPolicyError):
	"""Raised when password requirements are not met."""


def normalise_email(email: str) -> str:
	return email.strip().lower()


def normalise_username(username: Optional[str]) -> Optional[str]:
	if username is None:
		return None
	value = username.strip().lower().lstrip("@")
	return value or None


def normalise_wallet(wallet_address: Optional[str]) -> Optional[str]:
	if wallet_address is None:
		return None
	value = wallet_address.strip().lower()
	return value or None


def guard_username(username: Optional[str]) -> None:
	if username is None:
		return
	if not USERNAME_REGEX.match(username):
		raise UsernameFormatError("username_invalid")
	if username in BLOCKED_USERNAMES:
		raise UsernameFormatError("username_blocked")


def guard_wallet(wallet_address: Optional[str]) -> None:
	if wallet_address is not None and not WALLET_REGEX.match(wallet_address):
		raise WalletFormatError("wallet_invalid")


def guard_password(password: str) -> None:
	if len(password) < PASSWORD_MIN_LEN:
		raise PasswordTooWeak("password_too_short")
	if password.isdigit() or password.isalpha():
		raise PasswordTooWeak("password_too_simple")


async def enforce_register_rate(ip_address: str) -> None:
	if not await rate_limit.allow("register", ip_address or "unknown", limit=REGISTER_PER_HOUR, window_seconds=3600):
		raise IdentityRateLimitExceeded("rate_limited")


async def enforce_login_rate(email: str) -> None:
	if not await rate_limit.allow("login", email, limit=LOGIN_PER_MINUTE, window_seconds=60):
		raise IdentityRateLimitExceeded("rate_limited")
