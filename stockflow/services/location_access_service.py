from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockflow.core.errors import ForbiddenError
from stockflow.core.permissions import AuthorizationPort, Capability, get_authorizer
from stockflow.core.security_current import ActorContext
from stockflow.models.location import LocationAccessScope


class LocationAccessPort(Protocol):
    def accessible_location_ids(self, db: Session, actor: ActorContext) -> list[str] | None:
        """None means the actor is not restricted to specific locations."""
        ...


class ScopedLocationAccess:
    def __init__(self, authorizer: AuthorizationPort | None = None):
        self._authorizer = authorizer or get_authorizer()

    def accessible_location_ids(self, db: Session, actor: ActorContext) -> list[str] | None:
        if self._authorizer.has_capability(actor, Capability.LOCATION_ACCESS_ALL):
            return None
        rows = db.execute(
            select(LocationAccessScope.location_id).where(
                LocationAccessScope.business_id == actor.business_id,
                LocationAccessScope.actor_id == actor.actor_id,
            )
        ).scalars().all()
        return sorted(set(rows))


_default_location_access = ScopedLocationAccess()


def get_location_access() -> LocationAccessPort:
    return _default_location_access


def can_access_location(accessible: list[str] | None, location_id: str) -> bool:
    return accessible is None or location_id in accessible


def ensure_location_access(
    db: Session,
    location_access: LocationAccessPort,
    actor: ActorContext,
    location_id: str,
) -> None:
    accessible = location_access.accessible_location_ids(db, actor)
    if not can_access_location(accessible, location_id):
        raise ForbiddenError(
            "You do not have access to this location",
            code="location_access_denied",
            details=[{"location_id": location_id}],
        )
