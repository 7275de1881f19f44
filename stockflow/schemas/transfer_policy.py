from datetime import datetime

from pydantic import BaseModel, Field


class TransferPolicyOut(BaseModel):
    enforce_transfer_sod: bool
    allow_creator_to_check: bool
    allow_creator_to_send: bool
    allow_checker_to_send: bool
    allow_creator_to_receive: bool
    allow_sender_to_receive: bool
    allow_verifier_to_complete: bool
    exempt_roles: list[str]
    is_default: bool
    updated_by: str | None = None
    updated_at: datetime | None = None


class TransferPolicyUpdateIn(BaseModel):
    enforce_transfer_sod: bool | None = None
    allow_creator_to_check: bool | None = None
    allow_creator_to_send: bool | None = None
    allow_checker_to_send: bool | None = None
    allow_creator_to_receive: bool | None = None
    allow_sender_to_receive: bool | None = None
    allow_verifier_to_complete: bool | None = None
    exempt_roles: list[str] | None = Field(default=None, max_length=20)
