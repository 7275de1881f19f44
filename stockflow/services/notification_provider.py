import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

from stockflow.core.config import settings
from stockflow.core.id_utils import generate_reference
from stockflow.core.observability import log_event


@dataclass(frozen=True)
class TransferNotification:
    business_id: str
    event: str  # transfer_rejected, transfer_sent, transfer_completed, ...
    entity_id: str
    message: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NotificationResult:
    provider: str
    message_id: str
    status: str


class NotificationProvider(Protocol):
    name: str

    def notify(self, notification: TransferNotification) -> NotificationResult:
        ...


class LogNotificationProvider:
    name = "log"

    def notify(self, notification: TransferNotification) -> NotificationResult:
        message_id = generate_reference("NTF")
        log_event(
            "notification",
            provider=self.name,
            message_id=message_id,
            business_id=notification.business_id,
            notification_event=notification.event,
            entity_id=notification.entity_id,
            message=notification.message,
        )
        return NotificationResult(provider=self.name, message_id=message_id, status="sent")


class InMemoryNotificationProvider:
    """Keeps notifications in a list; used by tests and local tooling."""

    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sent: list[TransferNotification] = []

    def notify(self, notification: TransferNotification) -> NotificationResult:
        with self._lock:
            self.sent.append(notification)
        return NotificationResult(provider=self.name, message_id=generate_reference("MEM"), status="sent")

    def events(self) -> list[str]:
        with self._lock:
            return [item.event for item in self.sent]

    def clear(self) -> None:
        with self._lock:
            self.sent.clear()


_NOTIFICATION_PROVIDERS: dict[str, NotificationProvider] = {
    "log": LogNotificationProvider(),
    "memory": InMemoryNotificationProvider(),
}


def get_notification_provider(name: str | None = None) -> NotificationProvider:
    normalized = (name or settings.notification_provider_default or "").strip().lower()
    provider = _NOTIFICATION_PROVIDERS.get(normalized)
    if not provider:
        available = ", ".join(sorted(_NOTIFICATION_PROVIDERS))
        raise ValueError(f"Unknown notification provider '{name}'. Available: {available}")
    return provider


def notify_safely(notification: TransferNotification, provider: NotificationProvider | None = None) -> None:
    """Deliver after commit; a failing provider is logged and never reaches the caller."""
    try:
        (provider or get_notification_provider()).notify(notification)
    except Exception as exc:  # noqa: BLE001
        log_event(
            "notification_failed",
            level=logging.WARNING,
            business_id=notification.business_id,
            notification_event=notification.event,
            entity_id=notification.entity_id,
            error=str(exc),
        )
