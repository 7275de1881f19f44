from collections.abc import Callable
from enum import Enum
from typing import Protocol

from fastapi import Depends

from stockflow.core.errors import ForbiddenError
from stockflow.core.security_current import ActorContext, get_current_actor


class Capability(str, Enum):
    TRANSFER_VIEW = "stock_transfer.view"
    TRANSFER_CREATE = "stock_transfer.create"
    TRANSFER_UPDATE = "stock_transfer.update"
    TRANSFER_CHECK = "stock_transfer.check"
    TRANSFER_SEND = "stock_transfer.send"
    TRANSFER_RECEIVE = "stock_transfer.receive"
    TRANSFER_VERIFY = "stock_transfer.verify"
    TRANSFER_COMPLETE = "stock_transfer.complete"
    TRANSFER_CANCEL = "stock_transfer.cancel"
    INVENTORY_VIEW = "inventory.view"
    INVENTORY_ADJUST = "inventory.adjust"
    INVENTORY_RECONCILE = "inventory.reconcile"
    LOCATION_MANAGE = "location.manage"
    LOCATION_ACCESS_ALL = "location.access_all"
    AUDIT_VIEW = "audit.view"
    TRANSFER_POLICY_MANAGE = "transfer_policy.manage"
    PRODUCT_MANAGE = "product.manage"


_TRANSFER_OPERATOR = {
    Capability.TRANSFER_VIEW,
    Capability.TRANSFER_CREATE,
    Capability.TRANSFER_UPDATE,
    Capability.TRANSFER_CHECK,
    Capability.TRANSFER_SEND,
    Capability.TRANSFER_RECEIVE,
    Capability.TRANSFER_VERIFY,
    Capability.TRANSFER_COMPLETE,
    Capability.TRANSFER_CANCEL,
    Capability.INVENTORY_VIEW,
}

ROLE_CAPABILITY_MATRIX: dict[str, set[str]] = {
    "owner": {"*"},
    "admin": {c.value for c in Capability},
    "manager": {c.value for c in _TRANSFER_OPERATOR}
    | {
        Capability.INVENTORY_ADJUST.value,
        Capability.INVENTORY_RECONCILE.value,
        Capability.AUDIT_VIEW.value,
    },
    "staff": {
        Capability.TRANSFER_VIEW.value,
        Capability.TRANSFER_CREATE.value,
        Capability.TRANSFER_UPDATE.value,
        Capability.TRANSFER_RECEIVE.value,
        Capability.TRANSFER_VERIFY.value,
        Capability.INVENTORY_VIEW.value,
    },
}


def role_capabilities(role: str) -> set[str]:
    normalized = (role or "").strip().lower()
    return set(ROLE_CAPABILITY_MATRIX.get(normalized, set()))


class AuthorizationPort(Protocol):
    def has_capability(self, actor: ActorContext, capability: Capability) -> bool:
        ...


class ClaimsAuthorizer:
    """Grants explicit token permissions plus whatever the actor's roles carry."""

    def has_capability(self, actor: ActorContext, capability: Capability) -> bool:
        granted = set(actor.permissions)
        for role in actor.roles:
            granted |= role_capabilities(role)
        if "*" in granted:
            return True
        return Capability(capability).value in granted


_default_authorizer = ClaimsAuthorizer()


def get_authorizer() -> AuthorizationPort:
    return _default_authorizer


def ensure_capability(authorizer: AuthorizationPort, actor: ActorContext, capability: Capability) -> None:
    if not authorizer.has_capability(actor, capability):
        raise ForbiddenError(
            "Insufficient permission for this action",
            details=[{"capability": Capability(capability).value}],
        )


def require_capability(capability: Capability) -> Callable[..., ActorContext]:
    def dependency(
        actor: ActorContext = Depends(get_current_actor),
        authorizer: AuthorizationPort = Depends(get_authorizer),
    ) -> ActorContext:
        ensure_capability(authorizer, actor, capability)
        return actor

    return dependency
