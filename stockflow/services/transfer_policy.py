from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockflow.core.config import settings
from stockflow.core.id_utils import generate_id
from stockflow.models.transfer import StockTransfer
from stockflow.models.transfer_policy import TransferPolicySettings

POLICY_FLAGS = (
    "allow_creator_to_check",
    "allow_creator_to_send",
    "allow_checker_to_send",
    "allow_creator_to_receive",
    "allow_sender_to_receive",
    "allow_verifier_to_complete",
)


@dataclass(frozen=True)
class PolicySettings:
    enforce_transfer_sod: bool = True
    allow_creator_to_check: bool = False
    allow_creator_to_send: bool = False
    allow_checker_to_send: bool = False
    allow_creator_to_receive: bool = False
    allow_sender_to_receive: bool = False
    allow_verifier_to_complete: bool = True
    exempt_roles: tuple[str, ...] = ()


@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    code: str | None = None
    reason: str | None = None
    rule_field: str | None = None


@dataclass(frozen=True)
class _Rule:
    identity_field: str
    relaxing_flag: str
    reason: str


# transition -> identities the acting user must not hold on the transfer
SOD_RULES: dict[str, tuple[_Rule, ...]] = {
    "check_approve": (
        _Rule("created_by", "allow_creator_to_check", "The creator of a transfer cannot check it"),
    ),
    "check_reject": (
        _Rule("created_by", "allow_creator_to_check", "The creator of a transfer cannot check it"),
    ),
    "send": (
        _Rule("created_by", "allow_creator_to_send", "The creator of a transfer cannot send it"),
        _Rule("checked_by", "allow_checker_to_send", "The checker of a transfer cannot send it"),
    ),
    "mark_arrived": (
        _Rule("created_by", "allow_creator_to_receive", "The creator of a transfer cannot receive it"),
        _Rule("sent_by", "allow_sender_to_receive", "The sender of a transfer cannot receive it"),
    ),
    "complete": (
        _Rule("verified_by", "allow_verifier_to_complete", "The verifier of a transfer cannot complete it"),
    ),
}

ALLOWED = PolicyDecision(allowed=True)


def can_act_at(
    transfer: StockTransfer,
    actor_id: str,
    transition: str,
    policy: PolicySettings,
    roles: Iterable[str] = (),
) -> PolicyDecision:
    if not policy.enforce_transfer_sod:
        return ALLOWED
    exempt = {role.lower() for role in policy.exempt_roles}
    if exempt and exempt.intersection(role.lower() for role in roles):
        return ALLOWED

    for rule in SOD_RULES.get(transition, ()):
        if getattr(policy, rule.relaxing_flag):
            continue
        holder = getattr(transfer, rule.identity_field)
        if holder and holder == actor_id:
            return PolicyDecision(
                allowed=False,
                code="forbidden_same_actor",
                reason=rule.reason,
                rule_field=rule.relaxing_flag,
            )
    return ALLOWED


def _split_roles(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip().lower() for part in value.split(",") if part.strip())


def load_policy_row(db: Session, business_id: str) -> TransferPolicySettings | None:
    return db.execute(
        select(TransferPolicySettings).where(TransferPolicySettings.business_id == business_id)
    ).scalar_one_or_none()


def policy_from_row(row: TransferPolicySettings | None) -> PolicySettings:
    configured_exempt = tuple(role.lower() for role in settings.sod_exempt_roles)
    if row is None:
        return PolicySettings(exempt_roles=configured_exempt)
    stored_exempt = _split_roles(row.exempt_roles)
    return PolicySettings(
        enforce_transfer_sod=row.enforce_transfer_sod,
        allow_creator_to_check=row.allow_creator_to_check,
        allow_creator_to_send=row.allow_creator_to_send,
        allow_checker_to_send=row.allow_checker_to_send,
        allow_creator_to_receive=row.allow_creator_to_receive,
        allow_sender_to_receive=row.allow_sender_to_receive,
        allow_verifier_to_complete=row.allow_verifier_to_complete,
        exempt_roles=stored_exempt if row.exempt_roles is not None else configured_exempt,
    )


def get_policy_settings(db: Session, business_id: str) -> PolicySettings:
    return policy_from_row(load_policy_row(db, business_id))


def upsert_policy_settings(
    db: Session,
    *,
    business_id: str,
    actor_id: str,
    changes: dict,
) -> TransferPolicySettings:
    row = load_policy_row(db, business_id)
    if row is None:
        defaults = PolicySettings()
        row = TransferPolicySettings(
            id=generate_id(),
            business_id=business_id,
            enforce_transfer_sod=defaults.enforce_transfer_sod,
            **{flag: getattr(defaults, flag) for flag in POLICY_FLAGS},
        )
        db.add(row)

    for field_name in ("enforce_transfer_sod", *POLICY_FLAGS):
        if changes.get(field_name) is not None:
            setattr(row, field_name, bool(changes[field_name]))
    if "exempt_roles" in changes and changes["exempt_roles"] is not None:
        roles = [str(role).strip().lower() for role in changes["exempt_roles"] if str(role).strip()]
        row.exempt_roles = ",".join(sorted(set(roles)))
    row.updated_by = actor_id
    return row
