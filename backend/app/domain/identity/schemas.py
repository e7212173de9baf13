"""Pydantic schemas for registration, login and profiles."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.domain.identity.policy import DISPLAY_MAX_LEN, PASSWORD_MIN_LEN


class RegisterRequest(BaseModel):
	email: EmailStr
	password: Annotated[str, Field(min_length=PASSWORD_MIN_LEN, max_length=256)]
	username: Optional[str] = Field(default=None, max_length=31)
	display_name: Optional[str] = Field(default=None, max_length=DISPLAY_MAX_LEN)
	wallet_address: Optional[str] = Field(default=None, max_length=64)


class LoginRequest(BaseModel):
	email: EmailStr
	password: Annotated[str, Field(min_length=1, max_length=256)]


class VisibilityRequest(BaseModel):
	is_public: bool


class ProfileOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: str
	username: Optional[str] = None
	display_name: Optional[str] = None
	wallet_address: Optional[str] = None
	is_public: bool
	a_points: int
	total_connections: int
	created_at: datetime


class MeOut(ProfileOut):
	email: Optional[str] = None


class AuthResponse(BaseModel):
	access_token: str
	token_type: str = "bearer"
	expires_in: int
	user: MeOut
