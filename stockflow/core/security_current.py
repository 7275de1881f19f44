from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from stockflow.core.security import TokenValidationError, decode_token

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class ActorContext:
    actor_id: str
    business_id: str
    permissions: frozenset[str] = field(default_factory=frozenset)
    roles: frozenset[str] = field(default_factory=frozenset)
    username: str | None = None

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "ActorContext":
        return cls(
            actor_id=str(claims["sub"]),
            business_id=str(claims["business_id"]),
            permissions=frozenset(claims.get("permissions") or []),
            roles=frozenset(role.lower() for role in claims.get("roles") or []),
            username=claims.get("username"),
        )

    def to_claims(self) -> dict[str, Any]:
        """Snapshot used by queued jobs so the worker replays the caller's authority."""
        return {
            "sub": self.actor_id,
            "business_id": self.business_id,
            "permissions": sorted(self.permissions),
            "roles": sorted(self.roles),
            "username": self.username,
        }


def get_current_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> ActorContext:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(credentials.credentials)
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    actor = ActorContext.from_claims(payload)
    # picked up by the request log line
    request.state.actor_id = actor.actor_id
    request.state.business_id = actor.business_id
    return actor
