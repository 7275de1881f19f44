from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockflow.core.api_docs import error_responses
from stockflow.core.deps import get_db
from stockflow.core.permissions import Capability, require_capability
from stockflow.core.security_current import ActorContext, get_current_actor
from stockflow.schemas.transfer_policy import TransferPolicyOut, TransferPolicyUpdateIn
from stockflow.services.audit_service import log_audit_event
from stockflow.services.transfer_policy import (
    POLICY_FLAGS,
    load_policy_row,
    policy_from_row,
    upsert_policy_settings,
)

router = APIRouter(prefix="/transfer-policy", tags=["transfer-policy"])


def _policy_out(db: Session, business_id: str) -> TransferPolicyOut:
    row = load_policy_row(db, business_id)
    policy = policy_from_row(row)
    return TransferPolicyOut(
        enforce_transfer_sod=policy.enforce_transfer_sod,
        **{flag: getattr(policy, flag) for flag in POLICY_FLAGS},
        exempt_roles=list(policy.exempt_roles),
        is_default=row is None,
        updated_by=row.updated_by if row else None,
        updated_at=row.updated_at if row else None,
    )


@router.get(
    "",
    response_model=TransferPolicyOut,
    summary="Get separation-of-duties settings",
    responses=error_responses(401, 500),
)
def get_transfer_policy(
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_current_actor),
):
    return _policy_out(db, actor.business_id)


@router.put(
    "",
    response_model=TransferPolicyOut,
    summary="Update separation-of-duties settings",
    responses=error_responses(400, 401, 403, 422, 500),
)
def update_transfer_policy(
    payload: TransferPolicyUpdateIn,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(require_capability(Capability.TRANSFER_POLICY_MANAGE)),
):
    changes = payload.model_dump(exclude_unset=True)
    row = upsert_policy_settings(db, business_id=actor.business_id, actor_id=actor.actor_id, changes=changes)
    log_audit_event(
        db,
        business_id=actor.business_id,
        actor_id=actor.actor_id,
        action="transfer_policy.update",
        entity_type="transfer_policy_settings",
        entity_ids=[row.id],
        metadata_json=changes,
    )
    db.commit()
    return _policy_out(db, actor.business_id)
