"""Access token helpers.

HS256 tokens signed with the application secret. Issuer and audience are
checked on decode together with the claims the auth dependency relies on.
"""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Any, Dict, Iterable

import jwt
from jwt import InvalidTokenError

from app.settings import settings


ISSUER = "metabento-api"
AUDIENCE = "metabento-fe"
REQUIRED_CLAIMS = ("sub", "sid", "ver")


def encode_access(payload: dict[str, object]) -> str:
    """Encode an access token with issuer/audience defaults."""
    now = int(time.time())
    body: Dict[str, Any] = {"iss": ISSUER, "aud": AUDIENCE, "iat": now}
    body.update(payload)
    return jwt.encode(body, settings.secret_key, algorithm="HS256")


def mint_access_token(
    user_id: str,
    session_id: str,
    *,
    roles: Iterable[str] = (),
    ttl: timedelta | None = None,
) -> str:
    ttl = ttl or timedelta(minutes=settings.access_ttl_minutes)
    exp = int(time.time() + ttl.total_seconds())
    return encode_access(
        {
            "sub": str(user_id),
            "sid": str(session_id),
            "ver": 1,
            "roles": sorted(set(roles)),
            "exp": exp,
        }
    )


def decode_access(token: str) -> dict[str, object]:
    """Decode and validate an access token.

    Raises jwt.InvalidTokenError subclasses on failure.
    """
    options = {"require": ["exp", "iat", "iss", "aud"]}
    payload = jwt.decode(
        token,
        settings.secret_key,
        algorithms=["HS256"],
        audience=AUDIENCE,
        issuer=ISSUER,
        leeway=5,
        options=options,
    )
    for claim in REQUIRED_CLAIMS:
        if not payload.get(claim):
            raise InvalidTokenError(f"missing_claim:{claim}")
    return payload  # type: ignore[return-value]
