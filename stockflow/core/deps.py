from collections.abc import Iterator

from fastapi import Depends
from sqlalchemy.orm import Session

from stockflow.core.permissions import AuthorizationPort, get_authorizer
from stockflow.db.session import SessionLocal
from stockflow.services.location_access_service import LocationAccessPort, get_location_access
from stockflow.services.notification_provider import NotificationProvider, get_notification_provider
from stockflow.services.transfer_service import TransferPorts


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_notifier() -> NotificationProvider:
    return get_notification_provider()


def get_transfer_ports(
    authorizer: AuthorizationPort = Depends(get_authorizer),
    location_access: LocationAccessPort = Depends(get_location_access),
    notifier: NotificationProvider = Depends(get_notifier),
) -> TransferPorts:
    return TransferPorts(authorizer=authorizer, location_access=location_access, notifier=notifier)
