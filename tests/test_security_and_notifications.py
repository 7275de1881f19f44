from datetime import timedelta

import pytest
from jose import jwt

from stockflow.core.config import settings
from stockflow.core.permissions import Capability, ClaimsAuthorizer, role_capabilities
from stockflow.core.security import ALGORITHM, TokenValidationError, create_token, decode_token, get_token_metadata
from stockflow.core.security_current import ActorContext
from stockflow.services.notification_provider import (
    InMemoryNotificationProvider,
    TransferNotification,
    get_notification_provider,
    notify_safely,
)


def test_token_round_trip_builds_actor(test_context):
    token = create_token("alice", "biz-1", permissions=["stock_transfer.view"], roles=["Manager"], username="Alice")
    actor = ActorContext.from_claims(decode_token(token))
    assert actor.actor_id == "alice"
    assert actor.business_id == "biz-1"
    assert actor.roles == frozenset({"manager"})
    assert actor.username == "Alice"
    assert ActorContext.from_claims(actor.to_claims()) == actor

    metadata = get_token_metadata(token)
    assert metadata.subject == "alice"
    assert metadata.business_id == "biz-1"


def test_decode_rejects_expired_and_malformed_tokens(test_context):
    expired = create_token("alice", "biz-1", expires_delta=timedelta(seconds=-5))
    with pytest.raises(TokenValidationError):
        decode_token(expired)

    no_business = jwt.encode({"sub": "alice", "type": "access"}, settings.secret_key, algorithm=ALGORITHM)
    with pytest.raises(TokenValidationError):
        decode_token(no_business)

    bad_roles = jwt.encode(
        {"sub": "alice", "type": "access", "business_id": "biz-1", "roles": "admin"},
        settings.secret_key,
        algorithm=ALGORITHM,
    )
    with pytest.raises(TokenValidationError):
        decode_token(bad_roles)


def test_claims_authorizer_merges_roles_and_permissions():
    authorizer = ClaimsAuthorizer()
    staff = ActorContext(actor_id="sam", business_id="biz-1", roles=frozenset({"staff"}))
    assert authorizer.has_capability(staff, Capability.TRANSFER_RECEIVE)
    assert not authorizer.has_capability(staff, Capability.TRANSFER_SEND)

    granted = ActorContext(
        actor_id="sam",
        business_id="biz-1",
        roles=frozenset({"staff"}),
        permissions=frozenset({"stock_transfer.send"}),
    )
    assert authorizer.has_capability(granted, Capability.TRANSFER_SEND)

    owner = ActorContext(actor_id="olu", business_id="biz-1", roles=frozenset({"owner"}))
    assert authorizer.has_capability(owner, Capability.TRANSFER_POLICY_MANAGE)
    assert role_capabilities("unknown") == set()


def test_notify_safely_swallows_provider_failures():
    class BrokenProvider:
        name = "broken"

        def notify(self, notification):
            raise RuntimeError("smtp down")

    notification = TransferNotification(business_id="biz-1", event="transfer_sent", entity_id="tr-1", message="sent")
    notify_safely(notification, BrokenProvider())

    memory = InMemoryNotificationProvider()
    notify_safely(notification, memory)
    assert memory.events() == ["transfer_sent"]


def test_unknown_notification_provider_is_rejected():
    assert get_notification_provider("log").name == "log"
    with pytest.raises(ValueError):
        get_notification_provider("pigeon")
