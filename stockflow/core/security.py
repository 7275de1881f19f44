from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable
from uuid import uuid4

from jose import JWTError, jwt

from stockflow.core.config import settings

ALGORITHM = "HS256"


class TokenValidationError(ValueError):
    pass


@dataclass(frozen=True)
class TokenMetadata:
    subject: str
    business_id: str
    jti: str
    expires_at: datetime


def create_token(
    subject: str,
    business_id: str,
    *,
    permissions: Iterable[str] = (),
    roles: Iterable[str] = (),
    username: str | None = None,
    expires_delta: timedelta | None = None,
    jti: str | None = None,
) -> str:
    """Mint an access token. Session issuance lives elsewhere; this is for tooling and tests."""
    now = datetime.now(timezone.utc)
    expires_delta = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": subject,
        "type": "access",
        "business_id": business_id,
        "permissions": sorted(set(permissions)),
        "roles": sorted(set(roles)),
        "jti": jti or str(uuid4()),
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
    }
    if username:
        payload["username"] = username
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise TokenValidationError("Invalid token") from exc

    if not payload.get("sub"):
        raise TokenValidationError("Invalid token subject")

    if payload.get("type", "access") != "access":
        raise TokenValidationError("Invalid token type")

    if not payload.get("business_id"):
        raise TokenValidationError("Token is not bound to a business")

    for claim in ("permissions", "roles"):
        value = payload.get(claim, [])
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise TokenValidationError(f"Invalid {claim} claim")

    return payload


def get_token_metadata(token: str) -> TokenMetadata:
    payload = decode_token(token)
    exp = payload.get("exp")
    if not exp:
        raise TokenValidationError("Invalid token expiration")
    return TokenMetadata(
        subject=str(payload["sub"]),
        business_id=str(payload["business_id"]),
        jti=str(payload.get("jti") or ""),
        expires_at=datetime.fromtimestamp(int(exp), tz=timezone.utc),
    )
